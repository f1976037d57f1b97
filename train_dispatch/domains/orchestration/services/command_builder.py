"""
Command batch builder.

Turns a workflow plan into the shell program the execution channel runs on
the node. Everything here is pure: identical plans give byte-identical
batches, and nothing touches the network or the filesystem.
"""
import json
import logging
import re
import shlex
from typing import Any, Union

from train_dispatch.domains.orchestration.schemas.constants import TransferDirection, WorkflowKind
from train_dispatch.domains.orchestration.schemas.dispatch import CommandBatch
from train_dispatch.domains.orchestration.schemas.plans import (
    BulkTransferPlan,
    RemoteEnvironment,
    TrainingLaunchPlan,
)
from train_dispatch.domains.orchestration.schemas.training_config import ENV_NAME_OVERRIDES, TrainingConfig
from train_dispatch.errors import ConfigValidationError, NoUnitsFound

logger = logging.getLogger(__name__)

ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")

INNER_SCRIPT_PATH = "/tmp/train_as_user.sh"
TIMEOUT_EXIT_CODE = 124
UNIT_GRACE_SECONDS = 120

FIXED_ENV = (
    ("GPU_WARMUP", "0"),
    ("LOG_DEVICE_PLACEMENT", "0"),
    ("TFLITE_CONVERT_OFFICIAL", "0"),
    ("TFLITE_SKIP_CUDNN_CONVERT", "1"),
    ("TFLITE_OPTIMIZE", "0"),
)

# set by the launch script itself
SCRIPT_ENV_NAMES = (
    "CUDA_VISIBLE_DEVICES",
    "TF_FORCE_GPU_ALLOW_GROWTH",
    "PY_BIN",
    "VENV_SITE",
    "LOCAL_SITE",
    "EXIT_CODE",
    "UNIT_NAME",
    "TAIL_PID",
)

# names that change how the shell, the loader or the interpreter behave
PROTECTED_ENV_NAMES = frozenset({
    "PATH", "HOME", "USER", "LOGNAME", "SHELL", "IFS", "ENV", "BASH_ENV",
    "PS4", "PROMPT_COMMAND", "SHELLOPTS", "BASHOPTS", "CDPATH", "GLOBIGNORE",
    "TMPDIR", "VIRTUAL_ENV", "SUDO_ASKPASS",
})
PROTECTED_ENV_PREFIXES = ("LD_", "PYTHON", "BASH_FUNC", "SUDO_", "SYSTEMD_", "DBUS_", "XDG_")

NVIDIA_LIBS = (
    "cudnn", "cublas", "cuda_runtime", "cufft", "curand",
    "cusolver", "cusparse", "nccl", "nvjitlink",
)

SYSTEM_LIB_DIRS = (
    "/lib/x86_64-linux-gnu",
    "/usr/lib/x86_64-linux-gnu",
    "/usr/local/cuda/lib64",
)

GPU_DEVICE_RULES = (
    "char-major:195 rwm",
    "char-major:235 rwm",
    "char-major:236 rwm",
    "char-major:241 rwm",
    "/dev/nvidiactl rwm",
    "/dev/nvidia0 rwm",
    "/dev/nvidia-modeset rwm",
    "/dev/nvidia-uvm rwm",
    "/dev/nvidia-uvm-tools rwm",
)


def build(kind: WorkflowKind, config: Union[BulkTransferPlan, TrainingLaunchPlan]) -> CommandBatch:
    if kind == WorkflowKind.BULK_TRANSFER and isinstance(config, BulkTransferPlan):
        return build_bulk_transfer(config)
    if kind == WorkflowKind.TRAINING_LAUNCH and isinstance(config, TrainingLaunchPlan):
        return build_training_launch(config)
    raise ConfigValidationError(f"Cannot build a {kind.value} batch from {type(config).__name__}")


# ------------------------------------------------------------------ bulk transfer

def _dir_url(base: str, unit: str) -> str:
    return f"{base.rstrip('/')}/{unit}/"


def unit_command_group(unit: str, plan: BulkTransferPlan) -> str:
    source = shlex.quote(_dir_url(plan.source_url, unit))
    backup = shlex.quote(_dir_url(plan.backup_url, unit))
    filters = f'--exclude "*" --include {shlex.quote(plan.file_pattern)}'

    if plan.direction == TransferDirection.REVERSE:
        steps = [
            f"aws s3 mv {backup} {source} --recursive {filters} --metadata-directive COPY",
        ]
    else:
        local = shlex.quote(_dir_url(plan.local_dir, unit))
        steps = [
            f"mkdir -p {local}",
            f"aws s3 sync {source} {local} {filters}",
            f"aws s3 mv {source} {backup} --recursive {filters} --metadata-directive COPY",
        ]

    return " && ".join(steps)


def build_bulk_transfer(plan: BulkTransferPlan) -> CommandBatch:
    """One composite line: the first failing unit stops every unit after it."""
    if not plan.units:
        raise NoUnitsFound("No work units to transfer.")

    groups = [unit_command_group(unit, plan) for unit in plan.units]
    return CommandBatch(lines=(" && ".join(groups),))


# ------------------------------------------------------------------ training launch

def render_env_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, separators=(",", ":"))
    if value is None:
        return ""
    return str(value)


def _reserved_env_names() -> set[str]:
    names = {ENV_NAME_OVERRIDES.get(name, name) for name in TrainingConfig.model_fields}
    names.update(ENV_NAME_OVERRIDES)
    names.update(name for name, _ in FIXED_ENV)
    names.update(SCRIPT_ENV_NAMES)
    return names


def is_exportable_extra(name: str) -> bool:
    """Extra request keys become environment variables only when they cannot shadow anything."""
    if not ENV_NAME_PATTERN.match(name):
        return False
    if name in _reserved_env_names() or name in PROTECTED_ENV_NAMES:
        return False
    return not name.startswith(PROTECTED_ENV_PREFIXES)


def training_environment(config: TrainingConfig) -> list[tuple[str, str]]:
    """Environment variables exported to the trainer, declared fields first then extras."""
    env = [
        (ENV_NAME_OVERRIDES.get(name, name), render_env_value(value))
        for name, value in config.declared_fields().items()
    ]
    for name, value in sorted(config.extra_fields().items()):
        if is_exportable_extra(name):
            env.append((name, render_env_value(value)))
        elif ENV_NAME_PATTERN.match(name):
            logger.warning(f"[TRAINING] Extra field {name} is reserved and will not be exported")
    return env


def _library_path() -> str:
    site_dirs = [
        f"{site}/nvidia/{lib}/lib"
        for site in ("$VENV_SITE", "$LOCAL_SITE")
        for lib in NVIDIA_LIBS
    ]
    return ":".join(site_dirs + list(SYSTEM_LIB_DIRS)) + ":${LD_LIBRARY_PATH:-}"


def _inner_script(env: list[tuple[str, str]], remote: RemoteEnvironment) -> list[str]:
    log_path = shlex.quote(remote.log_path)
    exports = [f"export {name}=${{{name}:-{shlex.quote(value)}}}" for name, value in FIXED_ENV + tuple(env)]
    echo_env = " ".join(f"{name}=${{{name}:-}}" for name, _ in env)

    return [
        "#!/usr/bin/env bash",
        "set -euo pipefail",
        f": > {log_path}",
        f"exec > {log_path} 2>&1",
        'echo "[TRAIN] ===== Start $(date -Iseconds) ====="',
        f"cd {shlex.quote(remote.workdir)}",
        "if [ -f ~/.profile ]; then set +u; source ~/.profile || true; set -u; fi",
        "if [ -f ~/.bashrc ]; then set +u; source ~/.bashrc || true; set -u; fi",
        'source venv/bin/activate || { echo "VENV NOT FOUND"; exit 1; }',
        'for i in {1..12}; do if nvidia-smi > /dev/null 2>&1; then echo "GPU OK"; break; fi; echo "Waiting for GPU..."; sleep 5; done',
        "nvidia-smi || true",
        "PY_BIN=python",
        "VENV_SITE=$($PY_BIN -c 'import site; print(site.getsitepackages()[0])')",
        "LOCAL_SITE=$(python3 -c 'import site; print(site.getusersitepackages())')",
        "export CUDA_VISIBLE_DEVICES=0",
        "export TF_FORCE_GPU_ALLOW_GROWTH=true",
        *exports,
        f'export LD_LIBRARY_PATH="{_library_path()}"',
        f'echo "ENV: {echo_env}"',
        "$PY_BIN -c 'import tensorflow as tf; print(\"TF:\", tf.__version__); "
        "print(\"Physical GPUs:\", tf.config.list_physical_devices(\"GPU\"))' || true",
        'echo "=== Running training ==="',
        "EXIT_CODE=0",
        "set +e",
        f"timeout {remote.max_runtime_seconds}s $PY_BIN {shlex.quote(remote.entrypoint)}",
        "EXIT_CODE=$?",
        "set -e",
        'if [ -n "${VIRTUAL_ENV:-}" ]; then deactivate || true; fi',
        'echo "=== Training process finished with code: $EXIT_CODE ==="',
        'if [ "${AUTO_SHUTDOWN:-0}" = "1" ]; then',
        '  if [ "$EXIT_CODE" -eq 0 ]; then',
        '    echo "[TRAIN] Shutting down node: training succeeded (EXIT_CODE=0)"',
        f'  elif [ "$EXIT_CODE" -eq {TIMEOUT_EXIT_CODE} ]; then',
        f'    echo "[TRAIN] Training timeout of {remote.max_runtime_seconds}s reached (EXIT_CODE={TIMEOUT_EXIT_CODE}). Shutting down node"',
        "  else",
        '    echo "[TRAIN] Fatal error (EXIT_CODE=$EXIT_CODE). Shutting down node"',
        "  fi",
        "  sudo shutdown -h now",
        "fi",
        "exit $EXIT_CODE",
    ]


def _systemd_run(env: list[tuple[str, str]], remote: RemoteEnvironment) -> str:
    args = [
        "sudo /bin/systemd-run",
        '--unit="$UNIT_NAME"',
        '--description="TensorFlow GPU Training"',
        f"--uid={shlex.quote(remote.user)}",
        "--setenv=CUDA_VISIBLE_DEVICES=0",
        '--setenv=LD_LIBRARY_PATH=""',
    ]
    args += [f"--setenv={shlex.quote(f'{name}={value}')}" for name, value in FIXED_ENV + tuple(env)]
    args += [
        f"--property=RuntimeMaxSec={remote.max_runtime_seconds + UNIT_GRACE_SECONDS}",
        "--property=DevicePolicy=closed",
    ]
    args += [f'--property=DeviceAllow="{rule}"' for rule in GPU_DEVICE_RULES]
    args += [
        "--property=PrivateDevices=no",
        f'/bin/bash -lc "{INNER_SCRIPT_PATH}" || EXIT_CODE=$?',
    ]
    return "  " + " ".join(args)


def build_training_launch(plan: TrainingLaunchPlan) -> CommandBatch:
    remote = plan.remote
    env = training_environment(plan.config)
    user = shlex.quote(remote.user)
    log_path = shlex.quote(remote.log_path)
    tail_log = (
        f"for i in {{1..30}}; do [ -f {log_path} ] && break; sleep 1; done; "
        f"tail -n0 -F {log_path}"
    )

    lines = [
        "#!/bin/bash",
        "set -euo pipefail",
        'echo "=== Starting training (SSM) ==="',
        f"cat <<'EOSUB' > {INNER_SCRIPT_PATH}",
        *_inner_script(env, remote),
        "EOSUB",
        f"chmod +x {INNER_SCRIPT_PATH}",
        "EXIT_CODE=0",
        "if command -v systemd-run >/dev/null 2>&1; then",
        '  UNIT_NAME="training-job-$(date +%s)"',
        '  echo "Running as transient systemd unit: $UNIT_NAME"',
        _systemd_run(env, remote),
        '  echo "Training launched in background as unit $UNIT_NAME"',
        f"  echo {shlex.quote('Logs at: ' + remote.log_path)}",
        f'  echo "Streaming new log lines for {remote.log_tail_seconds}s"',
        f"  sudo -iu {user} bash -lc {shlex.quote(tail_log)} &",
        "  TAIL_PID=$!",
        f"  sleep {remote.log_tail_seconds} || true",
        "  kill $TAIL_PID >/dev/null 2>&1 || true",
        "else",
        '  echo "systemd-run not available. Running directly (inherits the agent cgroup)"',
        f"  sudo -iu {user} bash -lc {shlex.quote(INNER_SCRIPT_PATH)} || EXIT_CODE=$?",
        "fi",
        'echo "=== Finished with code: $EXIT_CODE ==="',
    ]
    return CommandBatch(lines=tuple(lines))
