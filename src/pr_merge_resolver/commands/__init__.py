"""Comment-driven commands."""

from pr_merge_resolver.commands.interpreter import CommandInterpreter, is_apply_all_command

__all__ = ["CommandInterpreter", "is_apply_all_command"]
