"""Analysis engine interface and implementations."""

from .port import AnalysisEngine, BoundedEngine
from .script_engine import InferenceScriptEngine
from .invoker import InferenceInvoker

__all__ = ['AnalysisEngine', 'BoundedEngine', 'InferenceScriptEngine', 'InferenceInvoker']
