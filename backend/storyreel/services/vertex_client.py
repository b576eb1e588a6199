"""Vertex AI client wrapper using google-genai SDK.

Provides location-aware clients for Google Generative AI using Vertex AI mode.
Authentication is handled automatically via Application Default Credentials (ADC).

Usage:
    from storyreel.services.vertex_client import get_vertex_client

    client = get_vertex_client(settings)                    # default location
    client = get_vertex_client(settings, location="global") # global endpoint
"""

from google import genai

from storyreel.config import Settings

# Per-(project, location) client cache
_clients: dict[tuple[str, str], genai.Client] = {}

# Models that must use the global endpoint
GLOBAL_REGION_MODELS = {
    "gemini-3-flash-preview",
    "gemini-3-pro-preview",
    "gemini-3-pro-image-preview",
}


def location_for_model(model_id: str, settings: Settings) -> str:
    """Return the Vertex AI location needed for a given model ID."""
    if model_id in GLOBAL_REGION_MODELS:
        return "global"
    return settings.providers.google_location


def get_vertex_client(settings: Settings, location: str | None = None) -> genai.Client:
    """Get or create a Vertex AI client for the given location.

    Clients are cached per project and location so repeated calls are cheap.

    Raises:
        ValueError: If no Google Cloud project is configured
    """
    project_id = settings.providers.google_project_id
    if not project_id:
        raise ValueError(
            "Google Cloud project not configured. Set "
            "STORYREEL_PROVIDERS__GOOGLE_PROJECT_ID to use gemini-* models."
        )
    loc = location or settings.providers.google_location

    key = (project_id, loc)
    if key not in _clients:
        _clients[key] = genai.Client(
            vertexai=True,
            project=project_id,
            location=loc,
        )

    return _clients[key]
