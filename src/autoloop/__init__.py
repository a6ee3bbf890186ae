"""Run an AI coding assistant in a loop until it reports the task is done."""

__version__ = "0.1.0"
