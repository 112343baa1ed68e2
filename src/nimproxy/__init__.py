"""An OpenAI-compatible proxy for the NVIDIA NIM chat completions API."""

__version__ = "0.1.0"

from .config import Settings, load_config
from .api import app, create_app
from .utils import splice_reasoning

from .backends import BackendClient, BackendError
from .resolver import ModelResolver, classify_tier
from .streaming import StreamTransducer, relay_stream, step
from .transforms import build_backend_request, build_chat_response
