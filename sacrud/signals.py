"""
Outbound notifications

The engine never listens to its own signals, they are a side channel for observers.
Signals are sent with the entity type name as sender so subscribers can connect
to "<entity> <action>" by filtering on the sender:

    signals.action_signal("create").connect(on_user_created, sender="User")
"""
from blinker import Namespace

_signals = Namespace()

models_loaded = _signals.signal("models-loaded")
response = _signals.signal("response")
response_error = _signals.signal("response error")


def action_signal(action):
    return _signals.signal(action)


def action_error_signal(action):
    return _signals.signal(f"{action} error")


def emit(action, sender, data, **context):
    response.send(sender, action=action, data=data, **context)
    action_signal(action).send(sender, data=data, **context)


def emit_error(action, sender, error, **context):
    response_error.send(sender, action=action, error=error, **context)
    action_error_signal(action).send(sender, error=error, **context)
