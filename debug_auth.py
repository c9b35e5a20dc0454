"""Run the auth bootstrap headless and print the resulting session state."""

import asyncio
import os
import sys

import auth
from infrastructure.observability import setup_observability
from use_cases import bootstrap


DEBUG_VISITOR_ID = "debug-cli"


def _export_secrets():
    # Streamlit secrets are not available outside `streamlit run`.
    for key, value in auth.load_secrets_file().items():
        if isinstance(value, (str, int, float)):
            os.environ.setdefault(key, str(value))


async def _diagnose(email=None, password=None):
    result = await bootstrap.run_startup(DEBUG_VISITOR_ID)
    print(f"Startup: {result.status} steps={list(result.planned_steps)}")
    if result.context is None:
        print(f"❌ {result.error}")
        return 1

    context = result.context
    try:
        state = await context.wait_until_ready()
        print(f"Initial state: authenticated={state.is_authenticated} role={state.role} loading={state.loading}")

        if email and password:
            sign_in = await context.sign_in(email, password)
            if not sign_in.ok:
                print(f"❌ Sign in failed: {sign_in.error}")
                return 1
            await context.reconciler.wait_idle()
            state = context.state
            print(f"✅ Signed in: principal={state.principal.id if state.principal else None} role={state.role} admin={state.is_admin}")
        return 0
    finally:
        await context.close()


if __name__ == "__main__":
    setup_observability()
    _export_secrets()
    args = sys.argv[1:]
    sys.exit(asyncio.run(_diagnose(*args[:2])))
