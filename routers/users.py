from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import get_db, parse_object_id, serialize_doc, utcnow
from errors import ErrorKind, StoreError, not_found
from schemas import SavedAddress
from security import get_current_user, public_user

router = APIRouter(prefix="/api/users", tags=["users"])


class ProfilePayload(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None


class WalletPayload(BaseModel):
    wallet_address: str = Field(..., pattern=r"^0x[0-9a-fA-F]{40}$")


class AddressUpdatePayload(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    is_default: Optional[bool] = None


def _user_response(db: Database, user_id, **extra) -> dict:
    user = db["user"].find_one({"_id": user_id})
    if not user:
        raise not_found("User")
    return {"success": True, "user": serialize_doc(public_user(user)), **extra}


def _save_addresses(db: Database, user: dict, addresses: list) -> dict:
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses, "updated_at": utcnow()}})
    return {"success": True, "addresses": serialize_doc(addresses)}


def _clear_default(addresses: list):
    for address in addresses:
        address["is_default"] = False


@router.put("/profile")
def update_profile(payload: ProfilePayload, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    update = payload.model_dump(exclude_none=True)
    update["updated_at"] = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    return _user_response(db, user["_id"])


@router.put("/link-wallet")
def link_wallet(payload: WalletPayload, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    address = payload.wallet_address.lower()
    existing = db["user"].find_one({"wallet_address": address})
    if existing and existing["_id"] != user["_id"]:
        raise StoreError(ErrorKind.CONFLICT, "This wallet address is already linked to another account")
    try:
        db["user"].update_one({"_id": user["_id"]}, {"$set": {"wallet_address": address, "updated_at": utcnow()}})
    except DuplicateKeyError:
        raise StoreError(ErrorKind.CONFLICT, "This wallet address is already linked to another account")
    return _user_response(db, user["_id"], message="Wallet address linked successfully")


@router.put("/unlink-wallet")
def unlink_wallet(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    db["user"].update_one({"_id": user["_id"]}, {"$unset": {"wallet_address": ""}, "$set": {"updated_at": utcnow()}})
    return _user_response(db, user["_id"], message="Wallet address unlinked successfully")


@router.post("/addresses")
def add_address(payload: SavedAddress, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    addresses = list(user.get("addresses", []))
    if payload.is_default:
        _clear_default(addresses)
    addresses.append({"_id": ObjectId(), **payload.model_dump()})
    return _save_addresses(db, user, addresses)


@router.put("/addresses/{address_id}")
def update_address(address_id: str, payload: AddressUpdatePayload, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    oid = parse_object_id(address_id)
    addresses = list(user.get("addresses", []))
    address = next((a for a in addresses if a.get("_id") == oid), None)
    if address is None:
        raise not_found("Address")

    changes = payload.model_dump(exclude_none=True)
    if changes.get("is_default"):
        _clear_default(addresses)
    address.update(changes)
    return _save_addresses(db, user, addresses)


@router.delete("/addresses/{address_id}")
def delete_address(address_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    oid = parse_object_id(address_id)
    addresses = [a for a in user.get("addresses", []) if a.get("_id") != oid]
    return _save_addresses(db, user, addresses)
