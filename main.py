import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import stripe
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

import admin_routes
import analytics_routes
import billing_routes
import collection_routes
import comment_routes
import prompt_routes
import tag_routes
import team_routes
from auth import create_access_token, get_current_user, hash_password, verify_password
from config import FRONTEND_URL, LOG_LEVEL
from database import create_client, create_document, get_db, open_database, serialize
from errors import PromptProError
from schemas import User

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger("promptpro")


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = create_client()
    app.state.db = open_database(client)
    try:
        yield
    finally:
        client.close()


app = FastAPI(title="PromptPro API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL, "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PromptProError)
async def promptpro_error_handler(request: Request, exc: PromptProError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.exception_handler(stripe.StripeError)
async def billing_error_handler(request: Request, exc: stripe.StripeError):
    logger.error(f"Stripe error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": "Billing provider error"})


app.include_router(prompt_routes.router)
app.include_router(comment_routes.router)
app.include_router(collection_routes.router)
app.include_router(team_routes.router)
app.include_router(tag_routes.router)
app.include_router(analytics_routes.router)
app.include_router(billing_routes.router)
app.include_router(admin_routes.router)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RegisterModel(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: Optional[str] = Field(None, min_length=2)


@app.get("/")
def read_root():
    return {"message": "PromptPro API running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["database"] = "✅ Available"
        response["connection_status"] = "Connected"
        collections = db.list_collection_names()
        response["collections"] = collections[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


# Auth routes
@app.post("/auth/register", response_model=TokenResponse, status_code=201)
def register(payload: RegisterModel, db: Database = Depends(get_db)):
    email = str(payload.email).lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(
        email=email,
        password_hash=hash_password(payload.password),
        name=payload.name,
    )
    user_id = create_document(db, "user", user)
    logger.info(f"Registered user {user_id}")
    return TokenResponse(access_token=create_access_token(user_id))


@app.post("/auth/login", response_model=TokenResponse)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": form_data.username.lower()})
    if not user or not verify_password(form_data.password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Incorrect email or password")
    return TokenResponse(access_token=create_access_token(str(user["_id"]), user.get("role", "user")))


@app.get("/me")
def get_me(current_user=Depends(get_current_user)):
    out = serialize(current_user)
    out.pop("password_hash", None)
    return out


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
