from fastapi import FastAPI

from .routers import appointments
from .utils.request_id import request_id_middleware

app = FastAPI(title="Appointment API")
app.middleware("http")(request_id_middleware)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(appointments.router)
