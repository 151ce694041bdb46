"""FastAPI entrypoint exposing the OmniCart chat assistant and catalog mutation APIs."""

from __future__ import annotations

from contextlib import asynccontextmanager
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from omnicart_assistant.service import ShoppingAssistantService

load_dotenv(ROOT_DIR / ".env")


DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
)


class ProductCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    price: float = Field(ge=0)
    shop_id: str | None = None
    description: str = ""
    image: str | None = None
    rating: float = Field(default=0.0, ge=0, le=5)
    tags: list[str] = Field(default_factory=list)
    reviews: list[str] = Field(default_factory=list)
    in_stock: bool = True


class ProductUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    price: float | None = Field(default=None, ge=0)
    shop_id: str | None = None
    description: str | None = None
    image: str | None = None
    rating: float | None = Field(default=None, ge=0, le=5)
    tags: list[str] | None = None
    reviews: list[str] | None = None
    in_stock: bool | None = None


class ShopCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    owner_name: str = Field(min_length=1)
    address: str = ""
    email: str | None = None
    phone: str | None = None
    description: str | None = None


def _cors_origins() -> list[str]:
    raw = os.getenv("OMNI_CORS_ORIGINS", "").strip()
    if not raw:
        return list(DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def create_app(assistant: ShoppingAssistantService | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.service is None:
            app.state.service = ShoppingAssistantService.from_settings()
        app.state.service.schedule_sync("startup")
        yield

    app = FastAPI(title="OmniCart Shopping Assistant", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.service = assistant

    def _service() -> ShoppingAssistantService:
        if app.state.service is None:
            raise HTTPException(status_code=503, detail="Assistant service is not ready.")
        return app.state.service

    @app.get("/api/health")
    def health() -> dict:
        return {
            "status": "ok",
            "app": "omnicart-shopping-assistant",
            "stats": _service().stats(),
        }

    @app.get("/chat/health")
    def chat_health() -> dict:
        return {"success": True, "message": "Chat assistant is ready"}

    @app.post("/chat")
    async def chat(request: Request):
        try:
            payload = await request.json()
        except ValueError:
            return _failure(400, "Message is required.")

        message = payload.get("message") if isinstance(payload, dict) else None
        if not isinstance(message, str) or not message.strip():
            return _failure(400, "Message is required.")

        data = await run_in_threadpool(_service().chat, message)
        return {"success": True, "data": data}

    @app.post("/shops", status_code=201)
    def create_shop(request: ShopCreateRequest) -> dict:
        try:
            shop = _service().create_shop(**request.model_dump())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"success": True, "data": shop}

    @app.post("/products", status_code=201)
    def create_product(request: ProductCreateRequest) -> dict:
        try:
            product = _service().create_product(**request.model_dump())
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0] if exc.args else "Not found.") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"success": True, "data": product}

    @app.put("/products/{product_id}")
    def update_product(product_id: str, request: ProductUpdateRequest) -> dict:
        changes = request.model_dump(exclude_unset=True)
        if not changes:
            raise HTTPException(status_code=400, detail="No product fields to update.")
        try:
            product = _service().update_product(product_id, changes)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0] if exc.args else "Not found.") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"success": True, "data": product}

    @app.delete("/products/{product_id}")
    def delete_product(product_id: str) -> dict:
        try:
            _service().delete_product(product_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=exc.args[0] if exc.args else "Not found.") from exc
        return {"success": True}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.api_server:app",
        host=os.getenv("OMNI_HOST", "127.0.0.1"),
        port=int(os.getenv("OMNI_PORT", "8000")),
        app_dir=str(ROOT_DIR),
    )
