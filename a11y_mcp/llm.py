"""Thin wrapper around the ``llm`` CLI used by completion workers."""

import os
import shutil
import subprocess
import tempfile


# Model ids must match the llm CLI format
DEFAULT_MODEL = "gpt-4o"
DEFAULT_TIMEOUT = 60

# Cap on captured output to avoid memory exhaustion
MAX_OUTPUT_CHARS = 1_000_000


class LLMCallError(RuntimeError):
    """Raised when the llm CLI fails, times out or is missing."""
    pass


def get_model(env_var: str = "A11Y_MODEL", default: str = DEFAULT_MODEL) -> str:
    """Get model from environment variable or use default."""
    return os.environ.get(env_var, default)


def get_timeout() -> int:
    """Get LLM timeout from environment."""
    try:
        return int(os.environ.get("LLM_TIMEOUT", DEFAULT_TIMEOUT))
    except (ValueError, TypeError):
        return DEFAULT_TIMEOUT


def build_command(prompt: str, model: str, system_prompt: str | None = None) -> list[str]:
    """Build the llm CLI invocation."""
    cmd = ["llm", "-m", model]
    if system_prompt:
        cmd.extend(["-s", system_prompt])
    cmd.append(prompt)
    return cmd


def call_llm(
    prompt: str,
    system_prompt: str | None = None,
    model: str | None = None,
    timeout: int | None = None,
) -> str:
    """Call the LLM via the llm CLI and return its stripped stdout.

    Args:
        prompt: The user prompt
        system_prompt: System prompt (optional)
        model: Model to use (defaults to A11Y_MODEL env var)
        timeout: Timeout in seconds (defaults to LLM_TIMEOUT env var)

    Returns:
        LLM response text

    Raises:
        LLMCallError: If the call fails or times out
    """
    if model is None:
        model = get_model()
    if timeout is None:
        timeout = get_timeout()

    if not shutil.which("llm"):
        raise LLMCallError("llm CLI not found. Install with: pip install llm")

    cmd = build_command(prompt, model, system_prompt)

    # Temp files keep huge outputs out of pipe buffers
    with tempfile.TemporaryFile(mode="w+") as out_f, tempfile.TemporaryFile(mode="w+") as err_f:
        try:
            proc = subprocess.run(
                cmd,
                stdout=out_f,
                stderr=err_f,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise LLMCallError(f"LLM call timed out after {timeout}s")
        except OSError as e:
            raise LLMCallError(f"LLM call failed: {e}")

        out_f.seek(0)
        err_f.seek(0)
        stdout = out_f.read(MAX_OUTPUT_CHARS)
        stderr = err_f.read(MAX_OUTPUT_CHARS)

    if proc.returncode != 0:
        raise LLMCallError(f"LLM call failed: {stderr.strip()}")

    return stdout.strip()


def check_llm_available() -> tuple[bool, str | None]:
    """Check if llm CLI is available and configured.

    Returns:
        (is_available, error_message)
    """
    if not shutil.which("llm"):
        return False, "llm CLI not found. Install with: pip install llm"

    try:
        result = subprocess.run(
            ["llm", "models"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (subprocess.SubprocessError, OSError) as e:
        return False, f"llm check failed: {e}"

    if result.returncode != 0:
        return False, f"llm models check failed: {result.stderr}"

    return True, None
