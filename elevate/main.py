from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from elevate.core.env_loader import load_project_env

load_project_env()

from elevate.api.routes_chat import router as chat_router
from elevate.api.routes_health import router as health_router

app = FastAPI(title="Elevate Chat Relay", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(chat_router)
