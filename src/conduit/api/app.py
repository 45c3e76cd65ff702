"""
Main FastAPI application for Conduit.
"""

import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Dict, List, Any, Optional, Union
from fastapi import Body, FastAPI, Depends, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from ..connectors import CONNECTOR_REGISTRY
from ..engine.mapping import MappingEngine
from ..engine.run_action import SynchronizationAction
from ..engine.sync import SynchronizationService
from ..engine.validation import SchemaValidator
from ..exceptions import (
    ConfigurationError, InputError, MappingError, NotFoundError, PersistenceError
)
from ..models.definition import SynchronizationDefinition
from ..models.mapping import Mapping, ObjectSchema
from ..core.config import get_optional_env, get_store_backend, setup_logging
from ..services.firestore import FirestoreService
from ..services.memory import InMemoryStore
from ..services.secrets import CredentialResolver, SecretManagerService
from ..services.store import SynchronizationStore
from ..version import __version__

logger = logging.getLogger(__name__)

# Global services (initialized in lifespan)
store: Optional[SynchronizationStore] = None
secret_service: Optional[SecretManagerService] = None
synchronization_action: Optional[SynchronizationAction] = None
mapping_engine = MappingEngine()


def create_store() -> SynchronizationStore:
    """Create the store selected by ``CONDUIT_STORE`` (firestore or memory)."""
    if get_store_backend() == "memory":
        return InMemoryStore()
    return FirestoreService(project_id=get_optional_env("GOOGLE_CLOUD_PROJECT") or None)


def create_action(
    synchronization_store: SynchronizationStore,
    secrets: Optional[SecretManagerService] = None
) -> SynchronizationAction:
    """Wire a run action to a store and credential source."""
    service = SynchronizationService(
        synchronization_store,
        mapping_engine=mapping_engine,
        credential_resolver=CredentialResolver(secrets)
    )
    return SynchronizationAction(synchronization_store, service)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global store, secret_service, synchronization_action

    setup_logging(get_optional_env("LOG_LEVEL", "INFO"))
    project_id = os.getenv("GOOGLE_CLOUD_PROJECT")

    # Initialize Secret Manager service
    try:
        secret_service = SecretManagerService(project_id=project_id)
        logger.info("Secret Manager service initialized successfully")
    except Exception as e:
        logger.warning(f"Secret Manager unavailable, credentials resolve from the environment: {e}")
        secret_service = None

    # Initialize synchronization store
    try:
        store = create_store()
        synchronization_action = create_action(store, secret_service)
        logger.info(f"Synchronization store {type(store).__name__} initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize synchronization store: {e}")
        store = None
        synchronization_action = None

    logger.info("Application startup complete")

    yield

    # Cleanup on shutdown
    logger.info("Application shutdown")


app = FastAPI(
    title="Conduit Synchronization API",
    description="API for running and inspecting source to target synchronizations",
    version=__version__,
    lifespan=lifespan
)

# Get allowed origins from environment variable
allowed_origins_str = os.getenv("ALLOWED_ORIGINS", "")
allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",") if origin.strip()]

if not allowed_origins:
    # Default to allowing all for local dev if not set
    allowed_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error responses

def _error_response(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": str(exc)})

@app.exception_handler(InputError)
async def input_error_handler(_request: Request, exc: InputError) -> JSONResponse:
    return _error_response(400, "Invalid input", exc)

@app.exception_handler(MappingError)
async def mapping_error_handler(_request: Request, exc: MappingError) -> JSONResponse:
    return _error_response(400, "Invalid mapping", exc)

@app.exception_handler(NotFoundError)
async def not_found_handler(_request: Request, exc: NotFoundError) -> JSONResponse:
    return _error_response(404, "Not found", exc)

@app.exception_handler(ConfigurationError)
async def configuration_error_handler(_request: Request, exc: ConfigurationError) -> JSONResponse:
    return _error_response(409, "Conflict", exc)

@app.exception_handler(PersistenceError)
async def persistence_error_handler(_request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error(f"Store unavailable: {exc}")
    return _error_response(503, "Store unavailable", exc)


# Dependency injection
def get_store() -> SynchronizationStore:
    if store is None:
        raise HTTPException(status_code=500, detail="Synchronization store not initialized")
    return store

def get_action() -> SynchronizationAction:
    if synchronization_action is None:
        raise HTTPException(status_code=500, detail="Synchronization action not initialized")
    return synchronization_action

def get_mapping_engine() -> MappingEngine:
    return mapping_engine

def get_optional_store() -> Optional[SynchronizationStore]:
    """Store for lookups that also work without one."""
    return store


def parse_id(raw_id: str, kind: str) -> int:
    """Path ids are integers; anything else cannot exist."""
    try:
        return int(raw_id)
    except ValueError:
        raise NotFoundError(f"{kind} {raw_id} not found")


def decode_json_field(value: Any, name: str) -> Any:
    """Accept an object or a JSON string holding one."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise InputError(f"Invalid JSON for {name}: {e}")
    return value


class MappingTestRequest(BaseModel):
    """Body of a mapping test; objects may also be sent as JSON strings."""
    input_object: Union[Dict[str, Any], str] = Field(..., alias="inputObject")
    mapping: Union[Dict[str, Any], str, int]
    schema_: Optional[Union[Dict[str, Any], str]] = Field(None, alias="schema")
    validation: bool = False


# Health check endpoint
@app.get("/health")
async def health_check():
    """Check the health of the application and its services."""
    return {
        "status": "healthy",
        "version": __version__,
        "services": {
            "store": store is not None,
            "secret_manager": secret_service is not None,
        },
        "connectors": list(CONNECTOR_REGISTRY.keys()),
    }


# =============================================================================
# RUN ENDPOINTS
# =============================================================================

@app.post("/api/synchronizations-run/{synchronization_id}")
def run_synchronization(
    synchronization_id: str,
    arguments: Optional[Dict[str, Any]] = Body(None),
    action: SynchronizationAction = Depends(get_action)
):
    """
    Run a synchronization and return its trace.

    The response is 200 whatever the outcome; the trace level tells callers
    whether the run succeeded. The trace is stored as a job log.
    """
    run_arguments = dict(arguments or {})
    run_arguments["synchronizationId"] = synchronization_id
    trace, job_log = action.run_and_record(run_arguments)
    logger.info(f"Run of synchronization {synchronization_id} logged as job log {job_log.id}")
    return trace.to_response()


@app.post("/api/synchronizations-test/{synchronization_id}")
def test_synchronization(
    synchronization_id: str,
    arguments: Optional[Dict[str, Any]] = Body(None),
    action: SynchronizationAction = Depends(get_action)
):
    """Dry-run a synchronization: fetch and map without writing anything."""
    run_arguments = dict(arguments or {})
    run_arguments.update({"synchronizationId": synchronization_id, "dryRun": True})
    return action.run(run_arguments).to_response()


@app.get("/api/synchronizations-logs/{synchronization_id}")
def list_synchronization_logs(
    synchronization_id: str,
    limit: int = 100,
    synchronization_store: SynchronizationStore = Depends(get_store)
) -> List[Dict[str, Any]]:
    """List the job logs of a synchronization, newest first."""
    definition_id = parse_id(synchronization_id, "Synchronization")
    if synchronization_store.get_definition(definition_id) is None:
        raise NotFoundError(f"Synchronization {synchronization_id} not found")
    logs = synchronization_store.list_job_logs({"synchronizationId": definition_id}, limit=limit)
    return [log.to_firestore() for log in logs]


@app.get("/api/synchronizations-contracts/{synchronization_id}")
def list_synchronization_contracts(
    synchronization_id: str,
    synchronization_store: SynchronizationStore = Depends(get_store)
) -> List[Dict[str, Any]]:
    """List the contracts of a synchronization."""
    definition_id = parse_id(synchronization_id, "Synchronization")
    if synchronization_store.get_definition(definition_id) is None:
        raise NotFoundError(f"Synchronization {synchronization_id} not found")
    return [contract.to_firestore() for contract in synchronization_store.list_contracts(definition_id)]


@app.post("/api/mappings/test")
def test_mapping(
    body: Dict[str, Any] = Body(...),
    engine: MappingEngine = Depends(get_mapping_engine),
    synchronization_store: Optional[SynchronizationStore] = Depends(get_optional_store)
):
    """
    Apply a mapping to an input object without persisting anything.

    Returns:
        ``resultObject``, ``isValid`` and ``validationErrors``
    """
    try:
        request = MappingTestRequest.model_validate(body)
    except ValidationError as e:
        raise InputError(f"Invalid mapping test request: {e.errors()[0]['msg']}")

    input_object = decode_json_field(request.input_object, "inputObject")
    if not isinstance(input_object, dict):
        raise InputError("inputObject must be a JSON object")

    mapping = _mapping_from_request(request.mapping, synchronization_store)
    result = engine.map(mapping, input_object)

    validation_errors: List[str] = []
    schema = request.schema_ if request.schema_ is not None else mapping.schema_id
    # A string is a stored schema id unless it holds an inline JSON object
    if isinstance(schema, str) and schema.lstrip().startswith("{"):
        schema = decode_json_field(schema, "schema")
    if request.validation and schema is not None:
        validation_errors = _validate_result(result, schema, synchronization_store)

    return {
        "resultObject": result,
        "isValid": not validation_errors,
        "validationErrors": validation_errors,
    }


def _mapping_from_request(raw: Union[Dict[str, Any], str, int], synchronization_store: Optional[SynchronizationStore]) -> Mapping:
    if isinstance(raw, int):
        if synchronization_store is None:
            raise InputError("Stored mappings are unavailable")
        mapping = synchronization_store.get_mapping(raw)
        if mapping is None:
            raise NotFoundError(f"Mapping {raw} not found")
        return mapping

    data = decode_json_field(raw, "mapping")
    if not isinstance(data, dict):
        raise InputError("mapping must be a JSON object")
    # A full mapping record carries its rules under "mapping"; otherwise the object is the rules
    if isinstance(data.get("mapping"), dict):
        try:
            return Mapping.model_validate(data)
        except ValidationError as e:
            raise InputError(f"Invalid mapping: {e.errors()[0]['msg']}")
    return Mapping(mapping=data)


def _validate_result(
    result: Dict[str, Any],
    schema: Union[Dict[str, Any], str],
    synchronization_store: Optional[SynchronizationStore]
) -> List[str]:
    if isinstance(schema, dict):
        try:
            return SchemaValidator.validate_against(result, ObjectSchema.model_validate(schema))
        except ValidationError as e:
            raise InputError(f"Invalid schema: {e.errors()[0]['msg']}")
    if synchronization_store is None:
        raise InputError("Stored schemas are unavailable")
    return SchemaValidator(synchronization_store.get_schema).validate(result, str(schema))


# =============================================================================
# SYNCHRONIZATION ENDPOINTS
# =============================================================================

@app.post("/api/synchronizations", status_code=201)
def create_synchronization(
    body: Dict[str, Any] = Body(...),
    synchronization_store: SynchronizationStore = Depends(get_store)
):
    """Create a synchronization definition."""
    try:
        definition = SynchronizationDefinition.model_validate(body)
    except ValidationError as e:
        raise InputError(f"Invalid synchronization: {e.errors()[0]['msg']}")
    if definition.mapping is not None:
        mapping_engine.validate(definition.mapping)
    return synchronization_store.create_definition(definition).to_firestore()


@app.get("/api/synchronizations")
def list_synchronizations(synchronization_store: SynchronizationStore = Depends(get_store)):
    """List all synchronization definitions."""
    return [definition.to_firestore() for definition in synchronization_store.list_definitions()]


@app.get("/api/synchronizations/{synchronization_id}")
def get_synchronization(
    synchronization_id: str,
    synchronization_store: SynchronizationStore = Depends(get_store)
):
    """Get a synchronization definition by ID."""
    definition = synchronization_store.get_definition(parse_id(synchronization_id, "Synchronization"))
    if definition is None:
        raise NotFoundError(f"Synchronization {synchronization_id} not found")
    return definition.to_firestore()


@app.put("/api/synchronizations/{synchronization_id}")
def update_synchronization(
    synchronization_id: str,
    updates: Dict[str, Any] = Body(...),
    synchronization_store: SynchronizationStore = Depends(get_store)
):
    """Update a synchronization definition; its patch version is bumped."""
    if not updates:
        raise InputError("No update data provided. At least one field must be specified.")
    try:
        definition = synchronization_store.update_definition(
            parse_id(synchronization_id, "Synchronization"), updates
        )
    except ValidationError as e:
        raise InputError(f"Invalid synchronization: {e.errors()[0]['msg']}")
    return definition.to_firestore()


@app.delete("/api/synchronizations/{synchronization_id}")
def delete_synchronization(
    synchronization_id: str,
    synchronization_store: SynchronizationStore = Depends(get_store)
):
    """Delete a synchronization definition that no contract references."""
    if not synchronization_store.delete_definition(parse_id(synchronization_id, "Synchronization")):
        raise NotFoundError(f"Synchronization {synchronization_id} not found")
    return {"message": f"Synchronization {synchronization_id} deleted successfully"}


# =============================================================================
# MAPPING ENDPOINTS
# =============================================================================

@app.post("/api/mappings", status_code=201)
def create_mapping(
    body: Dict[str, Any] = Body(...),
    synchronization_store: SynchronizationStore = Depends(get_store)
):
    """Create a mapping; its expressions are checked before it is stored."""
    try:
        mapping = Mapping.model_validate(body)
    except ValidationError as e:
        raise InputError(f"Invalid mapping: {e.errors()[0]['msg']}")
    mapping_engine.validate(mapping)
    return synchronization_store.create_mapping(mapping).to_firestore()


@app.get("/api/mappings")
def list_mappings(synchronization_store: SynchronizationStore = Depends(get_store)):
    """List all mappings."""
    return [mapping.to_firestore() for mapping in synchronization_store.list_mappings()]


@app.get("/api/mappings/{mapping_id}")
def get_mapping(
    mapping_id: str,
    synchronization_store: SynchronizationStore = Depends(get_store)
):
    """Get a mapping by ID."""
    mapping = synchronization_store.get_mapping(parse_id(mapping_id, "Mapping"))
    if mapping is None:
        raise NotFoundError(f"Mapping {mapping_id} not found")
    return mapping.to_firestore()


@app.put("/api/mappings/{mapping_id}")
def update_mapping(
    mapping_id: str,
    updates: Dict[str, Any] = Body(...),
    synchronization_store: SynchronizationStore = Depends(get_store)
):
    """Update a mapping; its patch version is bumped."""
    if not updates:
        raise InputError("No update data provided. At least one field must be specified.")
    if "mapping" in updates:
        mapping_engine.validate(updates["mapping"])
    try:
        mapping = synchronization_store.update_mapping(parse_id(mapping_id, "Mapping"), updates)
    except ValidationError as e:
        raise InputError(f"Invalid mapping: {e.errors()[0]['msg']}")
    return mapping.to_firestore()


@app.delete("/api/mappings/{mapping_id}")
def delete_mapping(
    mapping_id: str,
    synchronization_store: SynchronizationStore = Depends(get_store)
):
    """Delete a mapping that no synchronization uses."""
    if not synchronization_store.delete_mapping(parse_id(mapping_id, "Mapping")):
        raise NotFoundError(f"Mapping {mapping_id} not found")
    return {"message": f"Mapping {mapping_id} deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
