from .base import RunCondition, ShellCommand, Step, ToolInstall

__all__ = ["RunCondition", "ShellCommand", "Step", "ToolInstall"]
