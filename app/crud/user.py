from typing import Optional
from app.client.client import StoreClient
from app.schemas.schemas import ProfileUpdate
from app.utils.phone import validate_phone_number

PROFILE_SELECT = {
    "user_id": True,
    "user_name": True,
    "user_email": True,
    "user_phone": True,
    "user_address": True,
    "created_at": True,
    "_count": {"select": {"orders": True, "reviews": True}},
}

# Keep the local user row in step with the identity provider.
# Accounts created by guest checkout (no supabase_id yet) are claimed by email.
def upsert_identity(db: StoreClient, subject: str, email: str, name: Optional[str] = None) -> dict:
    user_name = name or email or "User"

    def sync(tx):
        guest = tx.users.find_first(where={"user_email": email, "supabase_id": None})
        if guest and not tx.users.find_unique(where={"supabase_id": subject}):
            return tx.users.update(where={"user_id": guest["user_id"]}, data={"supabase_id": subject})
        return tx.users.upsert(
            where={"supabase_id": subject},
            update={"user_email": email, "user_name": user_name},
            create={"supabase_id": subject, "user_email": email, "user_name": user_name},
        )

    return db.transaction(sync)

def get_profile(db: StoreClient, user_id: int) -> dict:
    return db.users.find_unique_or_throw(where={"user_id": user_id}, select=PROFILE_SELECT)

def update_profile(db: StoreClient, user_id: int, data: ProfileUpdate) -> dict:
    update_data = data.model_dump(exclude_unset=True)
    if "user_phone" in update_data:
        update_data["user_phone"] = validate_phone_number(update_data["user_phone"])
    if "user_name" in update_data and update_data["user_name"] is None:
        del update_data["user_name"]
    return db.users.update(where={"user_id": user_id}, data=update_data, select=PROFILE_SELECT)
