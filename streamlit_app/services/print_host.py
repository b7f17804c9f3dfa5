import logging
import uuid
from typing import Protocol

from streamlit.components.v1 import html
from streamlit.runtime.scriptrunner import get_script_run_ctx

from schemas.label_schemas import PrintableDocument
from utils.errors import HostError

logger = logging.getLogger(__name__)

POPUP_HINT = "Allow popups and print dialogs for this site and press Print again."

# Runs inside the component iframe that holds the label document, so no popup
# window is opened. print() only runs once every barcode image has decoded.
PRINT_SCRIPT = """
<script>
(function () {
  // print job %(job_id)s
  var images = Array.prototype.slice.call(document.images);
  Promise.all(images.map(function (img) {
    return img.decode().catch(function () { return null; });
  })).then(function () {
    window.focus();
    window.print();
  });
})();
</script>
"""


class PrintHost(Protocol):
    def print_document(self, document: PrintableDocument) -> None:
        """Hand `document` to the host's print facility; raise HostError if unavailable."""
        ...


def build_print_page(document: PrintableDocument, job_id: str) -> str:
    """The label document with the print trigger appended to its body."""
    script = PRINT_SCRIPT % {"job_id": job_id}
    body_end = document.html.rfind("</body>")
    if body_end == -1:
        return document.html + script
    return document.html[:body_end] + script + document.html[body_end:]


class BrowserPrintHost:
    """
    Prints through the user's browser from inside a running Streamlit script.

    Each job mounts a fresh component iframe (the job id makes its content
    unique) whose own window is printed, so popup blockers do not apply.
    """

    def __init__(self, height: int = 0):
        self.height = height

    def print_document(self, document: PrintableDocument) -> None:
        if get_script_run_ctx() is None:
            raise HostError("No browser session to print from", hint=POPUP_HINT)

        job_id = uuid.uuid4().hex
        logger.info("Sending print job %s (%s labels) to the browser", job_id, document.label_count)
        html(build_print_page(document, job_id), height=self.height)
