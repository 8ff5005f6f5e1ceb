from __future__ import annotations

import json
import logging
from datetime import datetime
from enum import Enum

from fastapi import Depends, FastAPI, Form, Query, Request
from fastapi.responses import JSONResponse

from questlife.config import configure_logging, load_config
from questlife.errors import ErrorKind, PersistenceError
from questlife.game import Game, Operation
from questlife.models import Reward, RewardType, Rule, RuleKind, TriggerType

logger = logging.getLogger(__name__)

app = FastAPI(title="Quest Life")


class SpendResource(str, Enum):
    STAMINA = "stamina"
    MANA = "mana"
    GOLD = "gold"
    GEMS = "gems"


class RestoreResource(str, Enum):
    STAMINA = "stamina"
    MANA = "mana"
    WELLNESS = "wellness"


ERROR_STATUS = {
    ErrorKind.ENTITY_NOT_FOUND: 404,
    ErrorKind.NOT_COMPLETABLE: 409,
    ErrorKind.INSUFFICIENT_STAMINA: 409,
    ErrorKind.INSUFFICIENT_CURRENCY: 409,
    ErrorKind.PERSISTENCE_FAILURE: 503,
}


@app.on_event("startup")
def startup() -> None:
    config = load_config()
    configure_logging(config.log_level)
    if getattr(app.state, "game", None) is None:
        app.state.game = Game.open(
            config.db_path,
            persist_attempts=config.persist_attempts,
            starter_pack=config.starter_pack,
        )


@app.exception_handler(ValueError)
def invalid_request(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse({"error": "invalid_request", "detail": str(exc)}, status_code=400)


@app.exception_handler(PersistenceError)
def persistence_failure(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("Store unavailable: %s", exc)
    return JSONResponse(exc.to_dict(), status_code=503)


def get_game(request: Request) -> Game:
    return request.app.state.game


def _respond(payload: dict, op: Operation, status_code: int = 200) -> JSONResponse:
    return JSONResponse({**payload, "persistence_errors": op.report()}, status_code=status_code)


def _fail(kind: ErrorKind, op: Operation | None = None, **extra) -> JSONResponse:
    body = {"error": kind.value, **extra}
    if op is not None:
        body["persistence_errors"] = op.report()
    return JSONResponse(body, status_code=ERROR_STATUS[kind])


def _parse_deadline(raw: str | None) -> datetime | None:
    if not raw:
        return None
    deadline = datetime.fromisoformat(raw)
    if deadline.tzinfo is not None:
        deadline = deadline.astimezone().replace(tzinfo=None)
    return deadline


# User / progression ledger


@app.get("/api/user", response_class=JSONResponse)
def user_status(game: Game = Depends(get_game)) -> JSONResponse:
    return JSONResponse(game.snapshot()["user"])


@app.post("/api/user/experience", response_class=JSONResponse)
def add_experience(amount: int = Form(..., ge=0), game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation() as op:
        levels = game.ledger.apply_experience(amount)
        user = game.ledger.snapshot()
    return _respond({"levels_gained": levels, "user": user}, op)


@app.post("/api/user/damage", response_class=JSONResponse)
def take_damage(amount: int = Form(..., gt=0), reason: str = Form("manual"), game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation() as op:
        died = game.ledger.damage(amount, reason)
        user = game.ledger.snapshot()
    return _respond({"died": died, "user": user}, op)


@app.post("/api/user/heal", response_class=JSONResponse)
def heal(amount: int = Form(..., ge=0), game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation() as op:
        game.ledger.heal_hp(amount)
        user = game.ledger.snapshot()
    return _respond({"user": user}, op)


@app.post("/api/user/restore/{resource}", response_class=JSONResponse)
def restore(resource: RestoreResource, amount: int = Form(..., ge=0), game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation() as op:
        if resource is RestoreResource.STAMINA:
            game.ledger.restore_stamina(amount)
        elif resource is RestoreResource.MANA:
            game.ledger.restore_mana(amount)
        else:
            game.ledger.update_wellness(amount)
        user = game.ledger.snapshot()
    return _respond({"user": user}, op)


@app.post("/api/user/spend/{resource}", response_class=JSONResponse)
def spend(resource: SpendResource, amount: int = Form(..., ge=0), game: Game = Depends(get_game)) -> JSONResponse:
    spenders = {
        SpendResource.STAMINA: game.ledger.spend_stamina,
        SpendResource.MANA: game.ledger.spend_mana,
        SpendResource.GOLD: game.ledger.spend_gold,
        SpendResource.GEMS: game.ledger.spend_gems,
    }
    with game.operation() as op:
        spent = spenders[resource](amount)
        user = game.ledger.snapshot()
    if not spent:
        kind = ErrorKind.INSUFFICIENT_STAMINA if resource is SpendResource.STAMINA else ErrorKind.INSUFFICIENT_CURRENCY
        return _fail(kind, op, resource=resource.value, user=user)
    return _respond({"user": user}, op)


@app.post("/api/user/class", response_class=JSONResponse)
def choose_class(hero_class: str = Form(...), action: str = Form("unlock"), game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation() as op:
        if action == "change":
            changed = game.ledger.change_class(hero_class)
        else:
            changed = game.ledger.unlock_class(hero_class)
        user = game.ledger.snapshot()
    return _respond({"changed": changed, "user": user}, op)


@app.post("/api/user/stats", response_class=JSONResponse)
def add_stats(
    strength: int = Form(0),
    intelligence: int = Form(0),
    constitution: int = Form(0),
    perception: int = Form(0),
    game: Game = Depends(get_game),
) -> JSONResponse:
    with game.operation() as op:
        game.ledger.add_stats(strength=strength, intelligence=intelligence, constitution=constitution, perception=perception)
        user = game.ledger.snapshot()
    return _respond({"user": user}, op)


@app.post("/api/user/equipment/{slot}", response_class=JSONResponse)
def equip(slot: str, item_id: str = Form(""), game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation() as op:
        if item_id:
            game.ledger.equip_item(slot, item_id)
        else:
            game.ledger.unequip_item(slot)
        user = game.ledger.snapshot()
    return _respond({"user": user}, op)


# Quests


@app.get("/api/quests", response_class=JSONResponse)
def list_quests(
    quest_type: str | None = Query(None, alias="type"),
    status: str | None = None,
    category: str | None = None,
    difficulty: str | None = None,
    game: Game = Depends(get_game),
) -> JSONResponse:
    with game.operation():
        quests = game.quests.filter_quests(quest_type, status, category, difficulty)
        return JSONResponse({"quests": [q.to_record() for q in quests]})


@app.post("/api/quests", response_class=JSONResponse)
def create_quest(
    title: str = Form(...),
    quest_type: str = Form(..., alias="type"),
    difficulty: str = Form("easy"),
    category: str = Form("general"),
    description: str = Form(""),
    deadline: str | None = Form(None),
    is_positive: bool | None = Form(None),
    game: Game = Depends(get_game),
) -> JSONResponse:
    with game.operation() as op:
        quest = game.quests.add_quest(
            title,
            quest_type,
            difficulty,
            category=category,
            description=description,
            deadline=_parse_deadline(deadline),
            is_positive=is_positive,
        )
    return _respond({"quest": quest.to_record()}, op, status_code=201)


@app.get("/api/quests/today", response_class=JSONResponse)
def today_quests(game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation():
        return JSONResponse({"quests": [q.to_record() for q in game.quests.today_quests()]})


@app.get("/api/quests/deadlines", response_class=JSONResponse)
def upcoming_deadlines(limit: int = Query(5, ge=1, le=50), game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation():
        return JSONResponse({"quests": [q.to_record() for q in game.quests.upcoming_deadlines(limit)]})


@app.post("/api/quests/{quest_id}/complete", response_class=JSONResponse)
def complete_quest(quest_id: str, game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation() as op:
        result = game.quests.complete_quest(quest_id)
        user = game.ledger.snapshot()
    if not result.ok:
        return _fail(result.error, op, quest=result.to_dict()["quest"], user=user)
    return _respond({**result.to_dict(), "user": user}, op)


@app.post("/api/quests/{quest_id}/update", response_class=JSONResponse)
def update_quest(
    quest_id: str,
    title: str | None = Form(None),
    description: str | None = Form(None),
    category: str | None = Form(None),
    difficulty: str | None = Form(None),
    deadline: str | None = Form(None),
    is_positive: bool | None = Form(None),
    game: Game = Depends(get_game),
) -> JSONResponse:
    changes = {
        "title": title,
        "description": description,
        "category": category,
        "difficulty": difficulty,
        "deadline": _parse_deadline(deadline),
        "is_positive": is_positive,
    }
    with game.operation() as op:
        quest = game.quests.update_quest(quest_id, **{k: v for k, v in changes.items() if v is not None})
    if quest is None:
        return _fail(ErrorKind.ENTITY_NOT_FOUND, op)
    return _respond({"quest": quest.to_record()}, op)


@app.post("/api/quests/{quest_id}/archive", response_class=JSONResponse)
def archive_quest(quest_id: str, game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation() as op:
        quest = game.quests.archive_quest(quest_id)
    if quest is None:
        return _fail(ErrorKind.ENTITY_NOT_FOUND, op)
    return _respond({"quest": quest.to_record()}, op)


@app.delete("/api/quests/{quest_id}", response_class=JSONResponse)
def delete_quest(quest_id: str, game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation() as op:
        deleted = game.quests.delete_quest(quest_id)
    if not deleted:
        return _fail(ErrorKind.ENTITY_NOT_FOUND, op)
    return _respond({"deleted": quest_id}, op)


# Progress bars


@app.get("/api/progress-bars", response_class=JSONResponse)
def list_progress_bars(game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation():
        grouped = game.progress.bars_by_category()
        return JSONResponse({"categories": {cat: [bar.to_record() for bar in bars] for cat, bars in grouped.items()}})


@app.post("/api/progress-bars", response_class=JSONResponse)
def create_progress_bar(
    name: str = Form(...),
    target_value: float = Form(..., ge=0),
    current_value: float = Form(0),
    description: str = Form(""),
    icon: str = Form(""),
    color: str = Form("#3B82F6"),
    category: str = Form("general"),
    visualization_type: str = Form("bar"),
    game: Game = Depends(get_game),
) -> JSONResponse:
    with game.operation() as op:
        bar = game.progress.create_bar(
            name,
            target_value,
            current_value=current_value,
            description=description,
            icon=icon,
            color=color,
            category=category,
            visualization_type=visualization_type,
        )
    return _respond({"progress_bar": bar.to_record()}, op, status_code=201)


def _bar_state(game: Game, bar_id: str) -> dict | None:
    bar = game.progress.get_bar(bar_id)
    if bar is None:
        return None
    return {"progress_bar": bar.to_record(), "user": game.ledger.snapshot()}


def _bar_response(state: dict | None, op: Operation, **extra) -> JSONResponse:
    if state is None:
        return _fail(ErrorKind.ENTITY_NOT_FOUND, op)
    return _respond({**state, **extra}, op)


@app.post("/api/progress-bars/{bar_id}/update", response_class=JSONResponse)
def update_progress_bar(
    bar_id: str,
    name: str | None = Form(None),
    description: str | None = Form(None),
    icon: str | None = Form(None),
    color: str | None = Form(None),
    category: str | None = Form(None),
    visualization_type: str | None = Form(None),
    target_value: float | None = Form(None, ge=0),
    game: Game = Depends(get_game),
) -> JSONResponse:
    changes = {
        "name": name,
        "description": description,
        "icon": icon,
        "color": color,
        "category": category,
        "visualization_type": visualization_type,
        "target_value": target_value,
    }
    with game.operation() as op:
        bar = game.progress.update_bar(bar_id, **{k: v for k, v in changes.items() if v is not None})
        state = _bar_state(game, bar_id) if bar is not None else None
    return _bar_response(state, op)


@app.post("/api/progress-bars/{bar_id}/adjust", response_class=JSONResponse)
def adjust_progress(bar_id: str, change: float = Form(...), reason: str = Form("Manual adjustment"), game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation() as op:
        game.progress.update_progress_value(bar_id, change, reason, TriggerType.MANUAL)
        state = _bar_state(game, bar_id)
    return _bar_response(state, op)


@app.post("/api/progress-bars/{bar_id}/value", response_class=JSONResponse)
def set_progress(bar_id: str, value: float = Form(...), reason: str = Form("Manual update"), game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation() as op:
        game.progress.set_progress_value(bar_id, value, reason)
        state = _bar_state(game, bar_id)
    return _bar_response(state, op)


@app.post("/api/progress-bars/{bar_id}/rules", response_class=JSONResponse)
def add_rule(
    bar_id: str,
    trigger_type: str = Form(...),
    value: float = Form(...),
    kind: str = Form("increment"),
    description: str = Form(""),
    trigger_task_id: str | None = Form(None),
    game: Game = Depends(get_game),
) -> JSONResponse:
    rule = Rule(trigger_type=TriggerType(trigger_type), value=value, description=description, trigger_task_id=trigger_task_id or None)
    with game.operation() as op:
        game.progress.add_rule(bar_id, rule, kind)
        state = _bar_state(game, bar_id)
    return _bar_response(state, op, rule=rule.to_record())


@app.delete("/api/progress-bars/{bar_id}/rules/{rule_id}", response_class=JSONResponse)
def remove_rule(bar_id: str, rule_id: str, kind: str = Query("increment"), game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation() as op:
        removed = game.progress.remove_rule(bar_id, rule_id, RuleKind(kind))
        state = _bar_state(game, bar_id) if removed else None
    return _bar_response(state, op)


@app.post("/api/progress-bars/{bar_id}/milestones", response_class=JSONResponse)
def add_milestone(
    bar_id: str,
    value: float = Form(...),
    title: str = Form(""),
    description: str = Form(""),
    reward_type: str | None = Form(None),
    reward_amount: int = Form(0, ge=0),
    item_id: str | None = Form(None),
    game: Game = Depends(get_game),
) -> JSONResponse:
    reward = Reward(type=RewardType(reward_type), amount=reward_amount, item_id=item_id) if reward_type else None
    with game.operation() as op:
        milestone = game.progress.add_milestone(bar_id, value, title, description, reward)
        state = _bar_state(game, bar_id)
    if milestone is None:
        return _fail(ErrorKind.ENTITY_NOT_FOUND, op)
    return _bar_response(state, op, milestone=milestone.to_record())


@app.delete("/api/progress-bars/{bar_id}", response_class=JSONResponse)
def delete_progress_bar(bar_id: str, game: Game = Depends(get_game)) -> JSONResponse:
    with game.operation() as op:
        deleted = game.progress.delete_bar(bar_id)
    if not deleted:
        return _fail(ErrorKind.ENTITY_NOT_FOUND, op)
    return _respond({"deleted": bar_id}, op)


# Settings and save data


@app.get("/settings", response_class=JSONResponse)
def settings(game: Game = Depends(get_game)) -> JSONResponse:
    return JSONResponse(game.settings())


@app.post("/settings", response_class=JSONResponse)
def save_settings(
    notifications_enabled: bool = Form(False),
    reminder_time: str = Form("09:00"),
    discord_webhook_url: str = Form(""),
    ntfy_topic_url: str = Form(""),
    game: Game = Depends(get_game),
) -> JSONResponse:
    with game.operation() as op:
        saved = game.update_settings(
            notifications_enabled=notifications_enabled,
            reminder_time=reminder_time,
            discord_webhook_url=discord_webhook_url,
            ntfy_topic_url=ntfy_topic_url,
        )
    return _respond({"settings": saved}, op)


@app.get("/export")
def export_save(game: Game = Depends(get_game)) -> JSONResponse:
    return JSONResponse(game.export_data())


@app.post("/import")
def import_save(payload: str = Form(...), game: Game = Depends(get_game)) -> JSONResponse:
    game.import_data(json.loads(payload))
    return JSONResponse(game.snapshot())
