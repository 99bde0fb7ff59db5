"""
Core module for the vision node.

Contains the image stages and pipelines, the blob locator, the per-source
acquisition worker, the event bus with its typed events, and the protocol
definitions (interfaces) the worker talks to.
"""
