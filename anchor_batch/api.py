"""Intent submission and batch query API (FastAPI)."""

import time

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .errors import InvalidIntent, NettingFailure, NotFound
from .merkle import verify_proof
from .orchestrator import BatchOrchestrator
from .types import IntentRequest, ProofRequest, QueueStats


def create_app(orchestrator: BatchOrchestrator, config=None) -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(title="Anchor Batch Engine", version="0.1.0")

    # CORS for the Next.js frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = orchestrator.store

    @app.get("/health")
    def health():
        return {
            "status": "healthy",
            "timestamp": int(time.time() * 1000),
            "service": "anchor-batch-engine",
            "phase": orchestrator.phase.value,
        }

    @app.post("/intents")
    def submit_intent(request: IntentRequest):
        try:
            intent_id = orchestrator.submit_intent(request.to_swap_intent())
        except InvalidIntent as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"success": True, "intentId": intent_id}

    @app.get("/intents")
    def get_intents():
        return [intent.to_dict() for intent in store.all()]

    @app.get("/intents/pending")
    def get_pending():
        return [intent.to_dict() for intent in store.pending_intents()]

    @app.get("/intents/{intent_id}")
    def get_intent(intent_id: str):
        try:
            return store.get(intent_id).to_dict()
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.get("/queue/stats")
    def get_stats():
        latest = orchestrator.batches.latest()
        return QueueStats(
            **store.stats(),
            last_batch_id=latest.batch_id if latest else None,
            last_batch_root=latest.summary.merkle_root if latest else None,
            batches_processed=len(orchestrator.batches),
        )

    @app.post("/batch/process")
    def process_batch():
        try:
            result = orchestrator.process_batch()
        except NettingFailure as e:
            raise HTTPException(status_code=500, detail=str(e))
        if result is None:
            return {"success": False, "message": "No pending intents to process"}
        return {"success": True, "batchResult": result.to_dict()}

    @app.get("/batch/{batch_id}/summary")
    def get_summary(batch_id: str):
        try:
            return orchestrator.get_summary(batch_id).to_dict()
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.get("/batch/{batch_id}/proofs")
    def get_proofs(batch_id: str):
        try:
            proofs = orchestrator.get_proofs(batch_id)
        except NotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {intent_id: [p.to_dict() for p in rows] for intent_id, rows in proofs.items()}

    @app.post("/proofs/verify")
    def verify(request: ProofRequest):
        return {"valid": verify_proof(request.leaf, request.path, request.root)}

    @app.get("/config")
    def get_config():
        if config is None:
            return {"error": "Config not available"}
        return {
            "chain_id": config.chain_id,
            "settlement_address": config.settlement_address,
            "price_source": config.price_source,
            "min_batch_size": config.min_batch_size,
            "batch_check_interval": config.batch_check_interval,
            "dust_threshold": str(config.dust_threshold),
        }

    return app
