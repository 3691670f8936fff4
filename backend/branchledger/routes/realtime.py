# Overview: Server-Sent Events transport for the realtime hub.

"""
Realtime stream

EventSource cannot send an Authorization header, so the signed token
travels in the query string. The session joins its branch rooms and its
user room; the response streams until the client goes away.
"""

from flask import Blueprint, Response, request, jsonify, current_app, stream_with_context

from ..realtime import get_notifier


realtime_bp = Blueprint("realtime", __name__, url_prefix="/api/realtime")


@realtime_bp.get("/stream")
def stream_route():
    notifier = get_notifier()
    if notifier is None:
        return jsonify({"error": "Realtime unavailable"}), 503

    session = notifier.connect(request.args.get("token"))
    if session is None:
        return jsonify({"error": "Invalid or expired token"}), 401

    keepalive = current_app.config.get("REALTIME_KEEPALIVE_SECONDS", 15)

    def generate():
        try:
            yield from session.stream(keepalive_seconds=keepalive)
        finally:
            notifier.disconnect(session)

    return Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
