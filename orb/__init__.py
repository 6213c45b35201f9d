"""
Orb Decision Engine

Policy and persona decision layer for the Orb life-OS. Decides who the user
is acting as, which mode they are working in, and whether a proposed action
or mode change is allowed.

Components:
- identity.py: Mode, Persona, Device and Role enumerations plus mode descriptors
- constraints/: Constraint model, stores, builders, defaults and the evaluator
- modes/: ModeService owning the current mode
- persona/: Rule-based persona classifier and override stores
- learning/: Pattern -> LearningAction generation and adaptive application
- preferences/: Per (user, mode) profiles and mode presets
- engine.py: OrbEngine facade wiring everything from args/engine.yaml

Usage:
    from orb.engine import build_engine
    from orb.constraints import ActionContext

    engine = build_engine()
    result = engine.evaluate_action(ActionContext(action_id="a1", current_mode="sol", tool_id="delete-file"))
"""

from pathlib import Path

# Path constants
PROJECT_ROOT = Path(__file__).parent.parent
ARGS_DIR = PROJECT_ROOT / "args"

__version__ = "0.1.0"

__all__ = [
    "PROJECT_ROOT",
    "ARGS_DIR",
    "__version__",
]
