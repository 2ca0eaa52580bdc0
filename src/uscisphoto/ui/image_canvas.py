from __future__ import annotations

import tkinter as tk
from tkinter import ttk
from typing import Optional, Tuple

from PIL import Image, ImageTk

ZOOM_MIN = 50
ZOOM_MAX = 150


class ImageCanvas(ttk.Frame):
    """
    Preview of a PIL image, scaled to fit, with optional zoom (50–150%) and
    drag-to-pan. Zoom and pan affect the preview only, never the saved photo.
    """

    def __init__(self, master, *, bg: str = "#f3f3f3", placeholder: str = "No image loaded", pannable: bool = False):
        super().__init__(master)
        self._canvas = tk.Canvas(self, highlightthickness=0, bg=bg)
        self._canvas.pack(fill="both", expand=True)

        self._photo: Optional[ImageTk.PhotoImage] = None
        self._pil: Optional[Image.Image] = None
        self._zoom = 100
        self._pan = (0, 0)
        self._drag_start: Optional[Tuple[int, int]] = None

        self._canvas.bind("<Configure>", lambda _evt: self._redraw())
        if pannable:
            self._canvas.bind("<ButtonPress-1>", self._on_press)
            self._canvas.bind("<B1-Motion>", self._on_drag)
            self._canvas.bind("<ButtonRelease-1>", lambda _evt: setattr(self, "_drag_start", None))

        self._placeholder_id = self._canvas.create_text(
            10, 10, anchor="nw",
            text=placeholder,
            fill="#555",
            font=("TkDefaultFont", 11),
        )

    def set_image(self, pil: Optional[Image.Image]) -> None:
        """Show a new image; zoom and pan go back to 100% / centred."""
        self._pil = pil
        self._zoom = 100
        self._pan = (0, 0)
        self._redraw()

    def clear(self) -> None:
        self.set_image(None)

    def set_placeholder(self, text: str) -> None:
        self._canvas.itemconfigure(self._placeholder_id, text=text)

    def set_zoom(self, percent: float) -> None:
        self._zoom = int(max(ZOOM_MIN, min(ZOOM_MAX, round(percent))))
        self._redraw()

    def _on_press(self, evt) -> None:
        self._drag_start = (evt.x - self._pan[0], evt.y - self._pan[1])

    def _on_drag(self, evt) -> None:
        if self._drag_start is None or self._pil is None:
            return
        self._pan = (evt.x - self._drag_start[0], evt.y - self._drag_start[1])
        self._redraw()

    def _fit_size(self, img_w: int, img_h: int, box_w: int, box_h: int) -> Tuple[int, int]:
        if img_w <= 0 or img_h <= 0 or box_w <= 2 or box_h <= 2:
            return (1, 1)
        scale = min(box_w / img_w, box_h / img_h) * (self._zoom / 100.0)
        new_w = max(1, int(img_w * scale))
        new_h = max(1, int(img_h * scale))
        return new_w, new_h

    def _redraw(self) -> None:
        self._canvas.delete("img")
        if self._pil is None:
            self._canvas.itemconfigure(self._placeholder_id, state="normal")
            return

        self._canvas.itemconfigure(self._placeholder_id, state="hidden")

        w = max(1, self._canvas.winfo_width())
        h = max(1, self._canvas.winfo_height())

        pil = self._pil
        new_w, new_h = self._fit_size(pil.width, pil.height, w, h)
        resized = pil.resize((new_w, new_h), Image.LANCZOS)

        # Keep at least half of the image inside the view while panning.
        max_dx = max(0, (new_w + w) // 4)
        max_dy = max(0, (new_h + h) // 4)
        dx = max(-max_dx, min(max_dx, self._pan[0]))
        dy = max(-max_dy, min(max_dy, self._pan[1]))

        self._photo = ImageTk.PhotoImage(resized)
        x = (w - new_w) // 2 + dx
        y = (h - new_h) // 2 + dy
        self._canvas.create_image(x, y, anchor="nw", image=self._photo, tags=("img",))
