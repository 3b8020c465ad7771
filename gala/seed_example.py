from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from gala.db import SessionLocal, engine
from gala.models import (
    Base,
    DiscountType,
    Event,
    Organization,
    OrganizationAdmin,
    Product,
    ProductKind,
    ProductTier,
    PromoCode,
    User,
)
from gala.security.sessions import create_web_session


def _get_or_create_user(db, email: str, first_name: str, last_name: str) -> User:
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user:
        user = User(email=email, first_name=first_name, last_name=last_name)
        db.add(user)
        db.flush()
    return user


def seed() -> str:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        org = db.execute(select(Organization).where(Organization.slug == 'harbor-foundation')).scalar_one_or_none()
        if not org:
            org = Organization(name='Harbor Foundation', slug='harbor-foundation')
            db.add(org)
            db.flush()

        event = db.execute(
            select(Event).where(Event.organization_id == org.id, Event.slug == 'spring-gala')
        ).scalar_one_or_none()
        if not event:
            event = Event(
                organization_id=org.id,
                name='Spring Gala',
                slug='spring-gala',
                event_date=datetime.now(tz=timezone.utc) + timedelta(days=90),
                is_active=True,
            )
            db.add(event)
            db.flush()

        catalog = [
            ('Individual Ticket', ProductKind.INDIVIDUAL_TICKET, ProductTier.STANDARD, 50000),
            ('VIP Ticket', ProductKind.INDIVIDUAL_TICKET, ProductTier.VIP, 75000),
            ('Full Table', ProductKind.FULL_TABLE, ProductTier.STANDARD, 500000),
            ('Table Captain', ProductKind.CAPTAIN_COMMITMENT, ProductTier.STANDARD, 0),
        ]
        for name, kind, tier, price_cents in catalog:
            existing = db.execute(
                select(Product).where(Product.event_id == event.id, Product.name == name)
            ).scalar_one_or_none()
            if not existing:
                db.add(Product(event_id=event.id, name=name, kind=kind, tier=tier, price_cents=price_cents))

        promo = db.execute(
            select(PromoCode).where(PromoCode.event_id == event.id, PromoCode.code == 'EARLYBIRD')
        ).scalar_one_or_none()
        if not promo:
            db.add(
                PromoCode(
                    event_id=event.id,
                    code='EARLYBIRD',
                    discount_type=DiscountType.PERCENTAGE,
                    discount_value=10,
                    max_uses=100,
                    valid_from=datetime.now(tz=timezone.utc) - timedelta(days=1),
                )
            )

        admin = _get_or_create_user(db, 'admin@example.org', 'Avery', 'Admin')
        membership = db.execute(
            select(OrganizationAdmin).where(
                OrganizationAdmin.user_id == admin.id,
                OrganizationAdmin.organization_id == org.id,
            )
        ).scalar_one_or_none()
        if not membership:
            db.add(OrganizationAdmin(user_id=admin.id, organization_id=org.id))

        token = create_web_session(db, admin.id, user_agent='seed_example')
        db.commit()
    return token


def main() -> None:
    session_token = seed()
    print('Seed data inserted/verified.')
    print(f'Admin session token: {session_token}')


if __name__ == '__main__':
    main()
