import os
import subprocess
import sys

import pytest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@pytest.mark.parametrize(
    "module",
    [
        "app.repositories.user_repository",
        "payments.services.payment_service",
        "payments.services.subscription_accrual_service",
        "payments.repositories.order_repository",
        "api.main",
    ],
)
def test_module_imports_first_in_fresh_interpreter(module):
    result = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        env={**os.environ, "PYTHONPATH": PROJECT_ROOT},
    )

    assert result.returncode == 0, result.stderr
