from fastapi import APIRouter, Depends

from app.client.client import StoreClient
from app.crud import user as crud_user
from app.db.deps import RequestContext, get_db, require_user
from app.schemas.schemas import ProfileUpdate

router = APIRouter()


@router.get("/profile")
def get_profile(context: RequestContext = Depends(require_user), db: StoreClient = Depends(get_db)):
    return crud_user.get_profile(db, context.user_id)


@router.put("/profile")
def update_profile(
    data: ProfileUpdate,
    context: RequestContext = Depends(require_user),
    db: StoreClient = Depends(get_db),
):
    return crud_user.update_profile(db, context.user_id, data)
