from sqlalchemy import delete, select

from leave_portal.db import SessionLocal
from leave_portal.models import (
    Approval,
    Base,
    Binding,
    DesignerDemandOverride,
    LeaveRequest,
    RookieBooking,
    Store,
    User,
    UserRole,
)
from leave_portal.services.store_config_service import set_config_value

DEMO_CONFIG = {
    'safety_factor': 1.1,
    'assistant_supply': 1.0,
    'rookie_support_supply': 0.7,
    'rookie_guest_supply': 0,
    'designer_default_demand': 0.3,
    'phase1_start_day': 1,
    'phase1_end_day': 5,
    'phase2_start_day': 6,
    'assistant_block_saturday': True,
    'assistant_block_if_master_working': True,
    'binding_mirror_leave': 'auto_create',
    'rookie_any_booking_supply_zero': True,
}
DESIGNER_NAMES = ['ray', 'joel', 'eva', 'chloe', 'yena', 'joyce', 'tobey', 'fenny']
ROOKIE_NAMES = ['kuan', 'rj', 'en']


def seed() -> dict:
    with SessionLocal() as db:
        Base.metadata.create_all(bind=db.get_bind())

        store = db.execute(select(Store).where(Store.name == 'Demo Salon')).scalar_one_or_none()
        if not store:
            store = Store(name='Demo Salon', timezone='Asia/Taipei')
            db.add(store)
            db.flush()

        for model in (Approval, Binding, RookieBooking, DesignerDemandOverride, LeaveRequest):
            db.execute(delete(model).where(model.store_id == store.id))
        db.execute(delete(User).where(User.store_id == store.id))

        for key, value in DEMO_CONFIG.items():
            set_config_value(db, store_id=store.id, key=key, value=value)

        manager = User(store_id=store.id, role=UserRole.MANAGER, display_name='Store Manager')
        designers = [User(store_id=store.id, role=UserRole.DESIGNER, display_name=name) for name in DESIGNER_NAMES]
        assistant = User(store_id=store.id, role=UserRole.ASSISTANT, display_name='sung', base_supply=1.0)
        rookies = [
            User(store_id=store.id, role=UserRole.ROOKIE, display_name=name, base_supply=0.7) for name in ROOKIE_NAMES
        ]
        db.add_all([manager, *designers, assistant, *rookies])
        db.flush()

        db.add(Binding(store_id=store.id, assistant_id=assistant.id, designer_id=designers[0].id, active=True))
        db.commit()

        return {
            'store_id': store.id,
            'manager_id': manager.id,
            'designer_ids': [designer.id for designer in designers],
            'assistant_id': assistant.id,
            'rookie_ids': [rookie.id for rookie in rookies],
        }


if __name__ == '__main__':
    print('Seed data inserted/verified.', seed())
