from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date

from .agent import build_agent
from .config import AgentConfig, get_preset, list_presets
from .errors import GoalNotFoundError, RecommendationNotFoundError, UnknownActionError
from .logging_config import configure_logging
from .validation import GOAL_CATEGORIES

logger = logging.getLogger(__name__)


def _load_config(args) -> AgentConfig:
    config = None
    if args.config:
        config = AgentConfig.load(args.config)
        if config is None:
            raise SystemExit(f"Config not found: {args.config}")
    config = config or AgentConfig()
    if args.data_dir:
        config.data_dir = args.data_dir
    if args.tracker_db:
        config.tracker_db_path = args.tracker_db
    if args.preset:
        config.learning = get_preset(args.preset)
    if args.no_memory:
        config.embedding_model = None
    return config


def _print(data, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2, default=str))
        return
    if isinstance(data, dict):
        for key, value in data.items():
            print(f"{key}: {value}")
    else:
        print(data)


def _cmd_recommend(agent, args) -> int:
    recs = agent.get_recommendations(args.count, mode=args.mode)
    if args.json:
        _print(recs.to_dict(), True)
        return 0
    if not recs.items:
        print(f"No recommendations ({recs.status.value})")
        return 0
    for i, rec in enumerate(recs.items, 1):
        sel = rec.selection
        print(
            f"{i}. [{rec.id}] {sel.action.name} "
            f"(expected {sel.expected_reward:+.2f}, +/-{sel.uncertainty:.2f}, {rec.confidence} confidence)"
        )
        print(f"   {rec.explanation}")
    return 0


def _cmd_feedback(agent, args) -> int:
    result = agent.record_feedback(
        args.id,
        accepted=args.accepted,
        alternative_chosen=args.alternative,
        feedback_score=args.score,
        outcome_score=args.outcome,
        satisfaction_rating=args.satisfaction,
    )
    _print(result.to_dict(), args.json)
    return 0


def _cmd_complete(agent, args) -> int:
    result = agent.record_action_completed(args.event_type, args.description, args.outcome)
    if result is None:
        print(f"Stored {args.event_type} event (no matching action)")
    else:
        _print(result.to_dict(), args.json)
    return 0


def _cmd_status(agent, args) -> int:
    _print(agent.get_status().to_dict(), args.json)
    return 0


def _cmd_maintenance(agent, args) -> int:
    today = date.fromisoformat(args.date) if args.date else None
    _print(agent.daily_maintenance(today), args.json)
    return 0


def _cmd_context(agent, args) -> int:
    context = agent.current_context()
    if args.json:
        _print(context.to_dict(), True)
    else:
        print(context.describe())
        for name, value in context.to_dict().items():
            print(f"  {name:<26} {value:+.3f}")
    return 0


def _print_goals(goals, as_json: bool) -> None:
    if as_json:
        _print([g.to_dict() for g in goals], True)
        return
    if not goals:
        print("No Big Three goals set for today")
    for g in goals:
        mark = "x" if g.is_completed else " "
        category = f" ({g.category})" if g.category else ""
        print(f"{g.priority}. [{mark}] [{g.id}] {g.title}{category}")


def _cmd_goals(agent, args) -> int:
    if args.goals_command == "set":
        goals = [{"title": t, "category": args.category} for t in args.titles]
        _print_goals(agent.set_big_three(goals), args.json)
    elif args.goals_command == "done":
        goal = agent.complete_big_three(args.id, args.satisfaction)
        _print(goal.to_dict(), args.json)
    else:
        _print_goals(agent.get_big_three(), args.json)
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Nudge Agent - adaptive recommendations for a personal life tracker"
    )
    ap.add_argument("--config", help="Path to a YAML or JSON config file")
    ap.add_argument("--data-dir", help="Directory for the engine database")
    ap.add_argument("--tracker-db", help="Path to the tracker's SQLite database")
    ap.add_argument("--preset", choices=list_presets(), help="Learning preset")
    ap.add_argument("--no-memory", action="store_true", help="Disable semantic memory")
    ap.add_argument("--json", action="store_true", help="Print JSON output")
    ap.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    sub = ap.add_subparsers(dest="command", required=True)

    rec = sub.add_parser("recommend", help="Show ranked recommendations")
    rec.add_argument("--count", "-n", type=int, default=3)
    rec.add_argument("--mode", choices=["ucb", "thompson"])
    rec.set_defaults(func=_cmd_recommend)

    fb = sub.add_parser("feedback", help="Respond to a recommendation")
    fb.add_argument("id", type=int, help="Recommendation id")
    group = fb.add_mutually_exclusive_group(required=True)
    group.add_argument("--accept", dest="accepted", action="store_true")
    group.add_argument("--reject", dest="accepted", action="store_false")
    fb.add_argument("--score", type=int, choices=[-1, 0, 1])
    fb.add_argument("--outcome", type=float)
    fb.add_argument("--satisfaction", type=int, choices=[1, 2, 3, 4, 5])
    fb.add_argument("--alternative", help="What you did instead")
    fb.set_defaults(func=_cmd_feedback)

    done = sub.add_parser("complete", help="Record a completed activity")
    done.add_argument("event_type", help="study_session, workout, checkin, ...")
    done.add_argument("description")
    done.add_argument("--outcome", type=float, default=0.7)
    done.set_defaults(func=_cmd_complete)

    st = sub.add_parser("status", help="Show agent status")
    st.set_defaults(func=_cmd_status)

    mt = sub.add_parser("maintenance", help="Backfill delayed rewards")
    mt.add_argument("--date", help="Run as if today were YYYY-MM-DD")
    mt.set_defaults(func=_cmd_maintenance)

    ctx = sub.add_parser("context", help="Show the current context vector")
    ctx.set_defaults(func=_cmd_context)

    goals = sub.add_parser("goals", help="Today's Big Three goals")
    goals_sub = goals.add_subparsers(dest="goals_command", required=True)
    goals_sub.add_parser("list", help="Show today's goals")
    gset = goals_sub.add_parser("set", help="Replace today's goals (in priority order)")
    gset.add_argument("titles", nargs="+", help="Up to three goal titles")
    gset.add_argument("--category", choices=GOAL_CATEGORIES)
    gdone = goals_sub.add_parser("done", help="Mark a goal completed")
    gdone.add_argument("id", type=int, help="Goal id")
    gdone.add_argument("--satisfaction", type=int, choices=[1, 2, 3, 4, 5])
    goals.set_defaults(func=_cmd_goals)

    srv = sub.add_parser("serve", help="Run the REST API server")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)
    srv.set_defaults(func=None)

    return ap


def _serve(args) -> int:
    from .api import main as api_main

    api_argv = ["--host", args.host, "--port", str(args.port)]
    if args.config:
        api_argv += ["--config", args.config]
    if args.data_dir:
        api_argv += ["--data-dir", args.data_dir]
    return api_main(api_argv)


def main(argv=None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    if args.command == "serve":
        return _serve(args)

    config = _load_config(args)
    configure_logging("DEBUG" if args.verbose else config.log_level, config.log_dir)

    agent = build_agent(config)
    try:
        return args.func(agent, args)
    except (RecommendationNotFoundError, UnknownActionError, GoalNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    finally:
        agent.close()


if __name__ == "__main__":
    raise SystemExit(main())
