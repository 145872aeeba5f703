from io import BytesIO

import numpy as np
import pandas as pd

from field_extractors import is_empty


# ----------------------------------------
def _python_value(value):
    # --hand plain python scalars to the mapper, never numpy/pandas ones
    if isinstance(value, str):
        return value if value != "" else None
    if isinstance(value, (list, tuple, dict)):
        return value
    if is_empty(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, np.generic):
        return value.item()
    return value


# ----------------------------------------
def parse_rows(source, sheet_name=0):
    """Read one worksheet into a list of {header: cell} rows.

    source may be a path, the workbook bytes or a binary file object.
    Every header appears in every row; blank cells are None. "NA", "N/A"
    and friends are left as text since they are valid codes (Namibia).
    """
    if isinstance(source, (bytes, bytearray)):
        source = BytesIO(source)
    elif hasattr(source, "seek"):
        source.seek(0)

    df = pd.read_excel(source, sheet_name=sheet_name, dtype=object, keep_default_na=False)

    headers = [str(x) for x in df.columns]
    rows = []
    for values in df.itertuples(index=False, name=None):
        rows.append(
            {header: _python_value(value) for header, value in zip(headers, values)}
        )
    return rows
