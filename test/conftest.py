import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class ManualScheduler:
    """Deterministic clock for toast timers: callbacks fire on advance()."""

    def __init__(self):
        self.now = 0
        self.pending = []

    def call_later(self, delay_ms, callback):
        self.pending.append((self.now + int(delay_ms), len(self.pending), callback))

    def advance(self, ms):
        self.now += int(ms)
        due = sorted(p for p in self.pending if p[0] <= self.now)
        self.pending = [p for p in self.pending if p[0] > self.now]
        for _, _, callback in due:
            callback()


def build_app(tmp_path: Path, user: str | None = "owner", restricted: bool = False, **config):
    from posledger.application.container import build_container
    from posledger.config import AppConfig

    tmp_path.mkdir(parents=True, exist_ok=True)
    app = build_container(tmp_path / "store.db", config=AppConfig(**config), scheduler=ManualScheduler())
    if user is not None:
        app.identity.sign_in(user, restricted=restricted)
    return app


def ledger_matches_stock(app) -> bool:
    return all(app.ledger.balance(p.id) == p.stock for p in app.catalog.list_products())
