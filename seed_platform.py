"""
seed_platform.py
────────────────
Creates the reserved platform school that SUPER_ADMIN users belong to and,
optionally, the first super admin. Run ONCE after the migration:

    python seed_platform.py

Reads from .env; set SEED_SUPER_ADMIN_PHONE to also create the super admin.
The super admin then logs in with OTP like every other user.
"""
import asyncio
import os
from dotenv import load_dotenv

load_dotenv()

# ── Change these in .env or edit here ────────────────────────────────
PLATFORM_SCHOOL_ID   = os.getenv("PLATFORM_SCHOOL_ID",       "platform")
PLATFORM_SCHOOL_NAME = os.getenv("PLATFORM_SCHOOL_NAME",     "Platform")
SUPER_ADMIN_NAME     = os.getenv("SEED_SUPER_ADMIN_NAME",    "Super Admin")
SUPER_ADMIN_PHONE    = os.getenv("SEED_SUPER_ADMIN_PHONE",   "")   # E.164, e.g. +919876543210
SUPER_ADMIN_EMAIL    = os.getenv("SEED_SUPER_ADMIN_EMAIL",   "") or None
# ─────────────────────────────────────────────────────────────────────


async def seed():
    from sqlalchemy import select
    from school_api.core.database import AsyncSessionLocal, engine
    from school_api.models.school import School
    from school_api.models.user import Role, User

    async with AsyncSessionLocal() as db:
        # Idempotent: reuse the platform school if it is already there
        school = await db.get(School, PLATFORM_SCHOOL_ID)
        if school:
            print(f"⚠️  Platform school already exists: {PLATFORM_SCHOOL_ID}")
        else:
            school = School(id=PLATFORM_SCHOOL_ID, code=PLATFORM_SCHOOL_ID.upper(), name=PLATFORM_SCHOOL_NAME)
            db.add(school)
            await db.flush()
            print(f"✅  Platform school created: {PLATFORM_SCHOOL_ID}")

        if SUPER_ADMIN_PHONE:
            existing = (await db.execute(
                select(User).where(User.phone == SUPER_ADMIN_PHONE)
            )).scalar_one_or_none()

            if existing:
                print(f"⚠️  User already exists for {SUPER_ADMIN_PHONE} (role {existing.role.value})")
            else:
                admin = User(
                    phone=SUPER_ADMIN_PHONE,
                    email=SUPER_ADMIN_EMAIL,
                    name=SUPER_ADMIN_NAME,
                    role=Role.SUPER_ADMIN,
                    school_id=school.id,
                )
                db.add(admin)
                await db.flush()
                print("✅  Super admin created")
                print(f"    ID    : {admin.id}")
                print(f"    Phone : {admin.phone}")

        await db.commit()

    await engine.dispose()

    print()
    print("🔑  Login: POST /api/auth/send-otp then POST /api/auth/login")
    print("    Super admins pick a school per request with the X-School-Id header.")


if __name__ == "__main__":
    asyncio.run(seed())
