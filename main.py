from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import configure_logging, settings
from errors import LicensingError, ServerConnectionError, SessionStateError
from license_client import LicenseClient
from models import ConnectOptions, Feature, RateLimitWindow, Session, Variable

# Request / response bodies

class ConnectBody(BaseModel):
    licenseKey: str
    maxRetries: Optional[int] = None

class DisconnectResult(BaseModel):
    success: bool

class StatusResponse(BaseModel):
    state: str
    connected: bool
    session: Optional[Session] = None
    daysRemaining: int = 0
    rateLimits: RateLimitWindow

class HealthCheckResponse(BaseModel):
    status: str
    service: str
    version: str
    applicationId: str


def create_app(license_client: Optional[LicenseClient] = None) -> FastAPI:
    """
    Build the local license service around one ``LicenseClient``.

    The client is created on startup unless one is given, and closed on
    shutdown either way.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        app.state.license_client = license_client or LicenseClient()
        try:
            yield
        finally:
            await app.state.license_client.aclose()

    app = FastAPI(
        title="Licensed App Client Service",
        description="Local session management against the license server",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SessionStateError)
    async def session_state_error_handler(request: Request, exc: SessionStateError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(LicensingError)
    async def licensing_error_handler(request: Request, exc: LicensingError):
        status_code = 503 if isinstance(exc, ServerConnectionError) else 502
        return JSONResponse(
            status_code=status_code,
            content={
                "detail": exc.message,
                "error": type(exc).__name__,
                "serverStatus": int(exc.status),
            },
        )

    def get_client(request: Request) -> LicenseClient:
        return request.app.state.license_client

    # API Endpoints
    @app.post("/api/license/connect", response_model=Session)
    async def connect(body: ConnectBody, client: LicenseClient = Depends(get_client)):
        """
        Connect the license with the license server.

        Starts the heartbeat on success. Server rejections come back as
        502 with the server status attached.
        """
        options = ConnectOptions(max_retries=body.maxRetries if body.maxRetries is not None else settings.CONNECT_MAX_RETRIES)
        session = await client.connect(body.licenseKey, options)
        if session is None:
            raise HTTPException(status_code=502, detail="Connect failed")
        return session

    @app.post("/api/license/disconnect", response_model=DisconnectResult)
    async def disconnect(client: LicenseClient = Depends(get_client)):
        return {"success": await client.disconnect()}

    @app.get("/api/license/status", response_model=StatusResponse)
    async def get_status(client: LicenseClient = Depends(get_client)):
        """
        Current connection state, session details and the last seen rate
        limit window.
        """
        session = client.session
        return {
            "state": client.state.value,
            "connected": client.connected,
            "session": session,
            "daysRemaining": session.days_remaining() if session else 0,
            "rateLimits": client.rate_limits.window,
        }

    @app.get("/api/license/feature/{name}", response_model=Feature)
    async def get_feature(name: str, client: LicenseClient = Depends(get_client)):
        feature = await client.get_feature(name)
        if feature is None:
            raise HTTPException(status_code=404, detail=f"Feature '{name}' unavailable")
        return feature

    @app.get("/api/license/variable/{name}", response_model=Variable)
    async def get_variable(name: str, client: LicenseClient = Depends(get_client)):
        variable = await client.get_variable(name)
        if variable is None:
            raise HTTPException(status_code=404, detail=f"Variable '{name}' unavailable")
        return variable

    @app.get("/health", response_model=HealthCheckResponse)
    async def health_check(client: LicenseClient = Depends(get_client)):
        """
        Health check endpoint for container orchestration.
        """
        return {
            "status": "healthy",
            "service": settings.SERVICE_NAME,
            "version": settings.APP_VERSION,
            "applicationId": client.application_id,
        }

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
