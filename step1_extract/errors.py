"""
Exceptions raised by the label pipeline
Only fatal conditions are raised; per-line and per-page failures are recorded as data
"""


class LabelPipelineError(Exception):
    """Base class for pipeline errors"""


class PDFLoadError(LabelPipelineError):
    """PDF bytes could not be opened or parsed"""


class UnknownPlatformError(LabelPipelineError):
    """No label parser is registered for the platform tag"""


class BarcodeError(LabelPipelineError):
    """Barcode id could not be generated, validated or rendered"""


class InventoryStoreError(LabelPipelineError):
    """Persistence layer failed while reading or writing inventory"""
