from flask_socketio import emit
from captcha_duel import socketio, db
from flask import current_app, request
from captcha_duel.services.duel import referee
from captcha_duel.services.duel.protocol import (
    JoinRoom, LeaveRoom, ProtocolError, SelectImage, Verify, decode, encode,
)
from captcha_duel.services.duel.session import DuelRules
from typing import Dict, Any


NAMESPACE = '/ws'

# sid -> {'room_code': ..., 'player_id': ...}
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _rules() -> DuelRules:
    return DuelRules.from_mapping(current_app.config)


def _deliver(outbox) -> None:
    """Send each (sid, message) pair to its socket."""
    for sid, message in outbox:
        if not sid:
            continue
        socketio.emit('message', encode(message), to=sid, namespace=request.namespace or NAMESPACE)


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    sid = _get_sid()
    ctx = _sid_to_ctx.pop(sid, None)
    if not ctx:
        return
    try:
        outbox = referee.disconnect(sid)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning(f"[disconnect-failed] sid={sid} error={exc}")
        return
    current_app.logger.info(f"[disconnect] player={ctx.get('player_id')} room={ctx.get('room_code')}")
    _deliver(outbox)


def _on_join(msg: JoinRoom) -> None:
    sid = _get_sid()
    room, outbox = referee.join(msg.room_id, msg.player_id, sid, _rules())
    seated = room.player(msg.player_id)
    if seated is not None and seated.sid == sid:
        _sid_to_ctx[sid] = {'room_code': room.room_code, 'player_id': msg.player_id}
    current_app.logger.info(
        f"[join] player={msg.player_id} room={room.room_code} count={len(room.players)} status={room.status}"
    )
    _deliver(outbox)


def _on_leave(msg: LeaveRoom) -> None:
    sid = _get_sid()
    outbox = referee.leave(msg.room_id, msg.player_id)
    _sid_to_ctx.pop(sid, None)
    current_app.logger.info(f"[leave] player={msg.player_id} room={msg.room_id}")
    _deliver(outbox)


def _on_select(msg: SelectImage) -> None:
    _deliver(referee.select(msg.room_id, msg.player_id, msg.image_index))


def _on_verify(msg: Verify) -> None:
    outbox = referee.grade(msg.room_id, msg.player_id, msg.selected_indices, _rules())
    current_app.logger.info(f"[verify] player={msg.player_id} room={msg.room_id} replies={len(outbox)}")
    _deliver(outbox)


_DISPATCH = {
    JoinRoom: _on_join,
    LeaveRoom: _on_leave,
    SelectImage: _on_select,
    Verify: _on_verify,
}


def handle_message(data):
    """Decode one client envelope and hand it to the referee."""
    try:
        msg = decode(data)
    except ProtocolError as exc:
        current_app.logger.warning(f"[protocol] sid={_get_sid()} dropped frame: {exc}")
        emit('error', {'message': str(exc)})
        return
    handler = _DISPATCH.get(type(msg))
    if handler is None:
        emit('error', {'message': f'{msg.TYPE} is not accepted from clients'})
        return
    try:
        handler(msg)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception(f"[handler-failed] type={msg.TYPE}")
        emit('error', {'message': f'{msg.TYPE} failed: {exc}'})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = [NAMESPACE, '/'] if testing else [NAMESPACE]
    for ns in namespaces:
        socketio.on_event('connect', handle_connect, namespace=ns)
        socketio.on_event('disconnect', handle_disconnect, namespace=ns)
        socketio.on_event('message', handle_message, namespace=ns)
        socketio.on_event('ping', handle_ping, namespace=ns)
