"""agentgrid - supervised multi-agent tmux team launcher

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Explicit wiring (no global singletons)
- Fail per pane, never per team

agentgrid builds a fixed tmux layout (two anchor panes plus K worker panes),
starts an interactive agent process in each pane, hands every agent its
initial instructions once it is ready, tracks the spawned processes and
shuts the whole team down cleanly.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
