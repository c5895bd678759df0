from __future__ import annotations

import base64

import qrcode

_DATA_URL_PREFIX = "data:image/"


def is_image_data_url(payload: str) -> bool:
    return payload.startswith(_DATA_URL_PREFIX)


def qr_svg_data_url(qr_text: str, border: int = 1) -> str:
    qr = qrcode.QRCode(border=border)
    qr.add_data(qr_text)
    qr.make(fit=True)
    matrix = qr.get_matrix()
    size = len(matrix)
    cells: list[str] = []
    for y, row in enumerate(matrix):
        for x, is_dark in enumerate(row):
            if is_dark:
                cells.append(f"<rect x='{x}' y='{y}' width='1' height='1'/>")
    svg = (
        f"<svg xmlns='http://www.w3.org/2000/svg' viewBox='0 0 {size} {size}' shape-rendering='crispEdges'>"
        "<rect width='100%' height='100%' fill='white'/>"
        "<g fill='black'>"
        + "".join(cells)
        + "</g></svg>"
    )
    encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def pairing_image(payload: str) -> str:
    """Image reference for a pairing payload.

    Backends may already send a rendered data URL; raw pairing strings are
    rendered to an SVG QR code.
    """
    if is_image_data_url(payload):
        return payload
    return qr_svg_data_url(payload)
