# trans_gate/cli/__init__.py
"""Trans-Gate CLI 模块入口。"""

from trans_gate.cli.main import app

__all__ = ["app"]
