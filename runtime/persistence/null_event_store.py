# runtime/persistence/null_event_store.py

class NullEventStore:
    def emit_render_event(self, *args, **kwargs):
        return None

    def recent_render_events(self, *args, **kwargs):
        return []
