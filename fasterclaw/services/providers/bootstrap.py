"""Container bootstrap shared by providers: startup script, env, upload paths."""

import re
import uuid
from typing import Dict

from fasterclaw.services.providers.base import CreateInstanceConfig

GATEWAY_PORT = 18789
WORKSPACE_DIR = "/home/node/.openclaw/workspace"
UPLOAD_DIR = f"{WORKSPACE_DIR}/uploads"
SOUL_FILE = f"{WORKSPACE_DIR}/SOUL.md"

_API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}

# Values are expanded by the container shell from its own environment
STARTUP_SCRIPT = """\
set -e
echo "=== FasterClaw OpenClaw Initialization ==="
mkdir -p ~/.openclaw/workspace/uploads
cat > ~/.openclaw/.env << CREDEOF
ANTHROPIC_API_KEY=$ANTHROPIC_API_KEY
OPENAI_API_KEY=$OPENAI_API_KEY
GOOGLE_API_KEY=$GOOGLE_API_KEY
CREDEOF
node openclaw.mjs models set "$AI_PROVIDER/$AI_MODEL" 2>/dev/null || true
node openclaw.mjs config set gateway.mode local 2>/dev/null || true
if [ -n "$TELEGRAM_BOT_TOKEN" ]; then
  node openclaw.mjs config set channels.telegram.enabled true 2>/dev/null || true
  node openclaw.mjs config set channels.telegram.dmPolicy open 2>/dev/null || true
  node openclaw.mjs config set 'channels.telegram.allowFrom' '["*"]' 2>/dev/null || true
  node openclaw.mjs config set plugins.entries.telegram.enabled true 2>/dev/null || true
fi
echo "Starting OpenClaw gateway..."
exec node openclaw.mjs gateway
"""


def instance_env(config: CreateInstanceConfig, gateway_token: str) -> Dict[str, str]:
    env = {
        "NODE_ENV": "production",
        "OPENCLAW_GATEWAY_TOKEN": gateway_token,
        "OPENCLAW_DISABLE_BONJOUR": "1",
        "FASTERCLAW_INSTANCE_ID": config.instance_id,
        "AI_PROVIDER": config.ai_provider,
        "AI_MODEL": config.ai_model,
        _API_KEY_ENV[config.ai_provider]: config.ai_api_key,
    }
    if config.telegram_bot_token:
        env["TELEGRAM_BOT_TOKEN"] = config.telegram_bot_token
    return env


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-") or "instance"


def upload_path(filename: str) -> str:
    """Unique in-container path for an uploaded file."""
    base = filename.replace("\\", "/").rsplit("/", 1)[-1]
    safe = re.sub(r"[^A-Za-z0-9._-]", "_", base).lstrip(".") or "upload"
    return f"{UPLOAD_DIR}/{uuid.uuid4().hex[:8]}-{safe}"


def integration_section(provider_name: str, instance_id: str, proxy_url: str, instructions: str) -> str:
    """Markdown appended to the agent's SOUL.md when an integration is enabled."""
    title = provider_name.capitalize()
    return (
        f"\n\n---\n\n## {title} Integration (FasterClaw secure proxy)\n\n"
        f"Instance ID: `{instance_id}`\n"
        f"Proxy URL: `{proxy_url}/proxy/{provider_name}`\n\n"
        f"{instructions.strip()}\n"
    )
