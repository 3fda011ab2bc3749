"""
REST API server for the recommendation engine.

Provides HTTP endpoints so the tracker UI can fetch nudges and report
feedback without loading Python directly.

Run with:
    python -m nudge_agent.api --config nudge.yaml

Requires: pip install nudge-agent[api]
"""
from __future__ import annotations

import argparse
import logging
from datetime import date
from typing import Dict, List, Optional

from . import __version__
from .agent import IntelligenceAgent, build_agent
from .config import AgentConfig
from .errors import (
    GoalNotFoundError,
    InvalidContextError,
    RecommendationNotFoundError,
    UnknownActionError,
)
from .health import HealthChecker, check_store_health
from .logging_config import configure_logging

logger = logging.getLogger(__name__)

# Check for FastAPI
try:
    from fastapi import FastAPI, HTTPException, Query
    from fastapi.middleware.cors import CORSMiddleware
    from pydantic import BaseModel, Field
    FASTAPI_AVAILABLE = True
except ImportError:
    FASTAPI_AVAILABLE = False


# ============================================================================
# Pydantic Models for API
# ============================================================================

if FASTAPI_AVAILABLE:

    class FeedbackRequest(BaseModel):
        """Response to a shown recommendation."""
        accepted: bool
        alternative_chosen: Optional[str] = None
        feedback_score: Optional[int] = Field(None, ge=-1, le=1)
        outcome_score: Optional[float] = Field(None, ge=0.0, le=1.0)
        satisfaction_rating: Optional[int] = Field(None, ge=1, le=5)

    class OutcomeRequest(BaseModel):
        """Outcome of an action taken in a given context."""
        action: str
        context: List[float]
        outcome_score: float = Field(..., ge=0.0, le=1.0)

    class EventRequest(BaseModel):
        """A completed tracker activity."""
        event_type: str = Field(..., description="e.g. study_session, workout, checkin")
        description: str
        outcome_score: float = Field(..., ge=0.0, le=1.0)
        metadata: Dict = Field(default_factory=dict)

    class RewardWeightsRequest(BaseModel):
        immediate: float = Field(..., ge=0.0)
        daily: float = Field(..., ge=0.0)
        weekly: float = Field(..., ge=0.0)
        monthly: float = Field(..., ge=0.0)

    class ExplorationRequest(BaseModel):
        beta: float = Field(..., ge=0.0, le=5.0)

    class BigThreeItem(BaseModel):
        title: str = Field(..., min_length=1, max_length=200)
        description: Optional[str] = None
        category: Optional[str] = Field(None, description="academic, physical, skills or personal")

    class BigThreeRequest(BaseModel):
        """Today's goals in priority order."""
        goals: List[BigThreeItem]

    class CompleteGoalRequest(BaseModel):
        satisfaction_rating: Optional[int] = Field(None, ge=1, le=5)


# ============================================================================
# API Server
# ============================================================================

class NudgeAPIServer:
    """
    FastAPI-based REST server around one IntelligenceAgent.

    Endpoints cover:
    - Recommendations and feedback
    - Activity events and raw outcomes
    - Status, health and settings
    - Semantic memory search
    - Big Three daily goals
    """

    def __init__(self, agent: IntelligenceAgent):
        if not FASTAPI_AVAILABLE:
            raise ImportError(
                "FastAPI not installed. Install with: pip install nudge-agent[api]"
            )

        self.agent = agent
        self.health = HealthChecker()
        self.health.add_check("store", lambda: check_store_health(agent.store))

        self.app = FastAPI(
            title="Nudge Agent API",
            description="Adaptive recommendations for a personal life tracker",
            version=__version__,
        )
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self._register_routes()

    def _register_routes(self):
        """Register all API routes."""
        agent = self.agent

        @self.app.get("/")
        def root():
            return {"status": "ok", "engine": "nudge-agent", "version": __version__}

        @self.app.get("/health")
        def health():
            return self.health.run_all().to_dict()

        @self.app.get("/recommendations")
        def get_recommendations(
            count: int = Query(3, ge=0, le=20),
            mode: Optional[str] = Query(None, pattern="^(ucb|thompson)$"),
        ):
            return agent.get_recommendations(count, mode=mode).to_dict()

        @self.app.post("/recommendations/{recommendation_id}/feedback")
        def post_feedback(recommendation_id: int, request: FeedbackRequest):
            try:
                result = agent.record_feedback(
                    recommendation_id,
                    accepted=request.accepted,
                    alternative_chosen=request.alternative_chosen,
                    feedback_score=request.feedback_score,
                    outcome_score=request.outcome_score,
                    satisfaction_rating=request.satisfaction_rating,
                )
            except RecommendationNotFoundError as e:
                raise HTTPException(status_code=404, detail=str(e))
            return result.to_dict()

        @self.app.post("/outcomes")
        def post_outcome(request: OutcomeRequest):
            try:
                result = agent.record_outcome(request.action, request.context, request.outcome_score)
            except UnknownActionError as e:
                raise HTTPException(status_code=404, detail=str(e))
            except InvalidContextError as e:
                raise HTTPException(status_code=422, detail=str(e))
            return result.to_dict()

        @self.app.post("/events")
        def post_event(request: EventRequest):
            try:
                result = agent.record_action_completed(
                    request.event_type,
                    request.description,
                    request.outcome_score,
                    metadata=request.metadata,
                )
            except ValueError as e:
                raise HTTPException(status_code=422, detail=str(e))
            return {"recorded": True, "update": result.to_dict() if result else None}

        @self.app.get("/status")
        def get_status():
            return agent.get_status().to_dict()

        @self.app.get("/context")
        def get_context():
            return agent.current_context().to_dict()

        @self.app.get("/features", response_model=List[str])
        def get_features():
            return agent.feature_names()

        @self.app.get("/actions")
        def list_actions():
            return [a.to_dict() for a in agent.registry.all()]

        @self.app.get("/memory/search")
        def search_memory(
            q: str = Query(..., min_length=1),
            limit: int = Query(5, ge=1, le=50),
            event_type: Optional[str] = None,
        ):
            try:
                results = agent.search_similar_experiences(q, limit, event_type)
            except RuntimeError as e:
                raise HTTPException(status_code=503, detail=str(e))
            return [r.to_dict() for r in results]

        @self.app.put("/settings/reward-weights")
        def put_reward_weights(request: RewardWeightsRequest):
            try:
                weights = agent.set_reward_weights(request.model_dump())
            except ValueError as e:
                raise HTTPException(status_code=422, detail=str(e))
            return weights.to_dict()

        @self.app.put("/settings/exploration")
        def put_exploration(request: ExplorationRequest):
            agent.set_exploration_beta(request.beta)
            return {"exploration_beta": agent.exploration_beta}

        @self.app.get("/big-three")
        def get_big_three(day: Optional[date] = Query(None, alias="date")):
            return [g.to_dict() for g in agent.get_big_three(day)]

        @self.app.put("/big-three")
        def put_big_three(request: BigThreeRequest):
            try:
                goals = agent.set_big_three([g.model_dump() for g in request.goals])
            except ValueError as e:
                raise HTTPException(status_code=422, detail=str(e))
            return [g.to_dict() for g in goals]

        @self.app.post("/big-three/{goal_id}/complete")
        def complete_big_three(goal_id: int, request: Optional[CompleteGoalRequest] = None):
            rating = request.satisfaction_rating if request is not None else None
            try:
                goal = agent.complete_big_three(goal_id, rating)
            except GoalNotFoundError as e:
                raise HTTPException(status_code=404, detail=str(e))
            return goal.to_dict()

        @self.app.post("/maintenance")
        def run_maintenance():
            return agent.daily_maintenance()


def create_app(agent: Optional[IntelligenceAgent] = None, config: Optional[AgentConfig] = None) -> "FastAPI":
    """Create and configure the FastAPI application."""
    if agent is None:
        agent = build_agent(config or AgentConfig())
    return NudgeAPIServer(agent).app


def main(argv=None):
    """Run the API server from command line."""
    if not FASTAPI_AVAILABLE:
        print("FastAPI not installed. Install with:")
        print("  pip install nudge-agent[api]")
        return 1

    import uvicorn

    parser = argparse.ArgumentParser(description="Nudge Agent API Server")
    parser.add_argument("--config", help="Path to a YAML or JSON config file")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--data-dir", help="Override the data directory")
    args = parser.parse_args(argv)

    config = (AgentConfig.load(args.config) if args.config else None) or AgentConfig()
    if args.data_dir:
        config.data_dir = args.data_dir
    configure_logging(config.log_level, config.log_dir)

    app = create_app(config=config)
    logger.info(f"Nudge API starting on http://{args.host}:{args.port} (docs at /docs)")
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
