from typing import Optional
from fastapi import APIRouter, Depends, File, Form, UploadFile
from api.dependencies import get_current_user, get_identity_store, get_media_host
from core.config import settings
from db.identity_store import IdentityStore
from schemas.user_schema import ChangePasswordRequest, User as UserSchema
from services.media_service import CloudinaryUploader, discard_local_files, save_upload_to_temp
from services.user_service import change_password, register_user
from utils.responses import api_json

router = APIRouter()

@router.post("/register")
async def register(
    fullName: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    username: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    coverImage: Optional[UploadFile] = File(None),
    store: IdentityStore = Depends(get_identity_store),
    media: CloudinaryUploader = Depends(get_media_host),
):
    avatar_path = cover_image_path = None
    try:
        avatar_path = await save_upload_to_temp(avatar, settings.UPLOAD_TEMP_DIR)
        cover_image_path = await save_upload_to_temp(coverImage, settings.UPLOAD_TEMP_DIR)
        user = await register_user(
            store,
            media,
            full_name=fullName,
            email=email,
            username=username,
            password=password,
            avatar_path=avatar_path,
            cover_image_path=cover_image_path,
        )
    finally:
        # Uploads remove their own files; this catches requests rejected before upload
        discard_local_files(avatar_path, cover_image_path)
    return api_json(201, user.to_response(), "User registered successfully")

@router.get("/current-user")
async def read_current_user(current_user: UserSchema = Depends(get_current_user)):
    return api_json(200, current_user.to_response(), "Current user fetched successfully")

@router.post("/change-password")
async def change_password_endpoint(
    data: ChangePasswordRequest,
    current_user: UserSchema = Depends(get_current_user),
    store: IdentityStore = Depends(get_identity_store),
):
    await change_password(store, current_user.id, data.old_password, data.new_password)
    return api_json(200, {}, "Password changed successfully")
