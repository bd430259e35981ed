"""Hosted entrypoint: the platform imports this module and serves `demo`."""

import os

from logitforest.gradio_ui import _build_ui

# Hosted runs keep fewer run directories unless the deployment says otherwise.
os.environ.setdefault("LOGITFOREST_GRADIO_RETENTION_KEEP", "5")

demo = _build_ui()

if __name__ == "__main__":
    demo.launch()
