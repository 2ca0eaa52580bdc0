from __future__ import annotations

import io
import logging
import os
import threading
import tkinter as tk
from dataclasses import replace
from tkinter import filedialog, messagebox, ttk

from PIL import Image

from uscisphoto.app.state import AppState
from uscisphoto.app.temp_paths import TempPaths
from uscisphoto.core.config import ESTIMATORS, PipelineConfig
from uscisphoto.core.log import configure_logging
from uscisphoto.core.models import PHOTO_REQUIREMENTS, PhotoUpload
from uscisphoto.pipeline.orchestrator import PhotoPipeline, ProcessedImageResult
from uscisphoto.ui.image_canvas import ZOOM_MAX, ZOOM_MIN, ImageCanvas
from uscisphoto.validation.report import Severity
from uscisphoto.validation.validator import format_report_text, validate_file

logger = logging.getLogger(__name__)

STATUS_MARKS = {Severity.ERROR: "❌", Severity.WARNING: "⚠️", Severity.SUCCESS: "✅", Severity.INFO: "ℹ️"}
DEFAULT_EXPORT_NAME = "uscis_photo.png"


class PhotoApp(ttk.Frame):
    """Upload → process → review validation → save."""

    def __init__(self, master: tk.Tk, state: AppState):
        super().__init__(master)
        self.master = master
        self.state = state

        # Scratch dir for per-run preview files
        self.temp_paths = TempPaths.default(app_name="uscisphoto")

        self._build_layout()
        self._bind_shortcuts()

        self.set_status("Ready.")
        self._set_buttons_initial_state()

    # ---------- UI construction ----------

    def _build_layout(self) -> None:
        self.pack(fill="both", expand=True)

        toolbar = ttk.Frame(self, padding=(10, 8))
        toolbar.pack(side="top", fill="x")

        self.btn_upload = ttk.Button(toolbar, text="Upload", command=self.on_upload)
        self.btn_process = ttk.Button(toolbar, text="Reprocess", command=self.on_process)
        self.btn_save = ttk.Button(toolbar, text="Save PNG", command=self.on_save)
        self.btn_reset = ttk.Button(toolbar, text="Reset", command=self.on_reset)

        self.btn_upload.pack(side="left")
        ttk.Separator(toolbar, orient="vertical").pack(side="left", fill="y", padx=8)
        self.btn_process.pack(side="left")
        self.btn_save.pack(side="left", padx=(6, 0))
        self.btn_reset.pack(side="left", padx=(12, 0))

        self.progress = ttk.Progressbar(toolbar, mode="indeterminate", length=120)
        self.progress.pack(side="right")

        main = ttk.PanedWindow(self, orient="horizontal")
        main.pack(side="top", fill="both", expand=True, padx=10, pady=(0, 10))

        # Left pane: original
        left = ttk.Frame(main)
        main.add(left, weight=1)
        lf_orig = ttk.LabelFrame(left, text="Original", padding=8)
        lf_orig.pack(fill="both", expand=True)
        self.original_canvas = ImageCanvas(lf_orig)
        self.original_canvas.pack(fill="both", expand=True)
        self.original_meta = ttk.Label(lf_orig, text="No file loaded.")
        self.original_meta.pack(side="bottom", anchor="w", pady=(6, 0))

        # Right pane: processed + validation
        right = ttk.Frame(main)
        main.add(right, weight=1)
        nb = ttk.Notebook(right)
        nb.pack(fill="both", expand=True)

        tab_processed = ttk.Frame(nb, padding=8)
        nb.add(tab_processed, text="Processed")
        proc_paned = ttk.PanedWindow(tab_processed, orient="vertical")
        proc_paned.pack(fill="both", expand=True)

        proc_preview = ttk.LabelFrame(proc_paned, text="Processed Preview", padding=8)
        self.processed_canvas = ImageCanvas(proc_preview, placeholder="No processed image", pannable=True)
        self.processed_canvas.pack(fill="both", expand=True)
        self.processed_meta = ttk.Label(proc_preview, text="Not processed yet.")
        self.processed_meta.pack(side="bottom", anchor="w", pady=(6, 0))
        proc_paned.add(proc_preview, weight=3)

        settings = ttk.LabelFrame(proc_paned, text="Settings", padding=8)
        proc_paned.add(settings, weight=1)
        settings.columnconfigure(1, weight=1)

        ttk.Label(settings, text="Zoom (preview):").grid(row=0, column=0, sticky="w", pady=3)
        self.var_zoom = tk.DoubleVar(value=100)
        ttk.Scale(
            settings, from_=ZOOM_MIN, to=ZOOM_MAX, variable=self.var_zoom,
            command=lambda v: self.processed_canvas.set_zoom(float(v)),
        ).grid(row=0, column=1, sticky="ew", pady=3)

        cfg = self.state.config
        ttk.Label(settings, text="Background tolerance:").grid(row=1, column=0, sticky="w", pady=3)
        self.var_tolerance = tk.DoubleVar(value=cfg.heuristic.tolerance)
        ttk.Spinbox(settings, from_=25, to=60, increment=5, textvariable=self.var_tolerance, width=8).grid(
            row=1, column=1, sticky="w", pady=3
        )

        ttk.Label(settings, text="Background estimate:").grid(row=2, column=0, sticky="w", pady=3)
        self.var_estimator = tk.StringVar(value=cfg.heuristic.estimator)
        ttk.Combobox(settings, values=ESTIMATORS, textvariable=self.var_estimator, state="readonly", width=10).grid(
            row=2, column=1, sticky="w", pady=3
        )

        self.var_use_model = tk.BooleanVar(value=cfg.enable_model)
        ttk.Checkbutton(settings, text="Use ML model (rembg)", variable=self.var_use_model).grid(
            row=3, column=0, columnspan=2, sticky="w", pady=3
        )
        self.var_force_alt = tk.BooleanVar(value=cfg.force_alternative_method)
        ttk.Checkbutton(settings, text="Force heuristic method", variable=self.var_force_alt).grid(
            row=4, column=0, columnspan=2, sticky="w", pady=3
        )
        ttk.Button(settings, text="Restore defaults", command=self.on_restore_defaults).grid(
            row=5, column=0, sticky="w", pady=(8, 0)
        )

        tab_val = ttk.Frame(nb, padding=8)
        nb.add(tab_val, text="Validation")
        tab_val.columnconfigure(0, weight=1)
        tab_val.rowconfigure(1, weight=1)

        self.validation_status = ttk.Label(tab_val, text="Upload a photo to validate it.")
        self.validation_status.grid(row=0, column=0, sticky="w", pady=(0, 6))

        columns = ("rule", "status", "details")
        self.tree = ttk.Treeview(tab_val, columns=columns, show="headings", height=10)
        self.tree.heading("rule", text="Rule")
        self.tree.heading("status", text="Status")
        self.tree.heading("details", text="Details")
        self.tree.column("rule", width=140, stretch=False)
        self.tree.column("status", width=60, stretch=False)
        self.tree.column("details", width=460, stretch=True)
        self.tree.grid(row=1, column=0, sticky="nsew")

        btn_row = ttk.Frame(tab_val)
        btn_row.grid(row=2, column=0, sticky="ew", pady=(8, 0))
        self.btn_copy_report = ttk.Button(btn_row, text="Copy report", command=self.on_copy_report)
        self.btn_copy_report.pack(side="left")

        status = ttk.Frame(self, padding=(10, 6))
        status.pack(side="bottom", fill="x")
        self.status_var = tk.StringVar(value="Ready.")
        ttk.Label(status, textvariable=self.status_var).pack(side="left")

    def _bind_shortcuts(self) -> None:
        for mod in ("Control", "Command"):
            self.master.bind_all(f"<{mod}-o>", lambda e: self.on_upload())
            self.master.bind_all(f"<{mod}-r>", lambda e: self.on_process())
            self.master.bind_all(f"<{mod}-s>", lambda e: self.on_save())

    # ---------- Utilities ----------

    def set_status(self, text: str) -> None:
        self.status_var.set(text)

    def _set_buttons_initial_state(self) -> None:
        self.btn_process.state(["disabled"])
        self.btn_save.state(["disabled"])
        self.btn_copy_report.state(["disabled"])

    def _set_processing_ui(self, processing: bool) -> None:
        if processing:
            self.btn_process.state(["disabled"])
            self.btn_save.state(["disabled"])
            self.progress.start(12)
            return

        self.progress.stop()
        self.btn_process.state(["!disabled"] if self.state.upload else ["disabled"])
        result = self.state.result
        has_image = result is not None and result.processed_png is not None
        self.btn_save.state(["!disabled"] if has_image else ["disabled"])
        self.btn_copy_report.state(["!disabled"] if result is not None else ["disabled"])

    def _render_validation_report(self) -> None:
        for iid in self.tree.get_children():
            self.tree.delete(iid)
        result = self.state.result
        if result is None:
            self.validation_status.configure(text="Upload a photo to validate it.")
            return
        report = result.report
        self.validation_status.configure(text=report.status_text())
        for r in report.sorted_for_display():
            self.tree.insert("", "end", values=(r.rule_id, STATUS_MARKS[r.severity], r.message))

    def _config_from_ui(self) -> PipelineConfig:
        config = self.state.config
        heuristic = config.heuristic
        try:
            heuristic = replace(heuristic, tolerance=float(self.var_tolerance.get()))
        except (tk.TclError, ValueError):
            pass
        heuristic = replace(heuristic, estimator=self.var_estimator.get() or heuristic.estimator)
        config = replace(
            config,
            heuristic=heuristic,
            enable_model=bool(self.var_use_model.get()),
            force_alternative_method=bool(self.var_force_alt.get()),
        )
        self.state.config = config
        return config

    # ---------- Upload ----------

    def on_upload(self) -> None:
        path = filedialog.askopenfilename(
            title="Select a photo",
            filetypes=[("Images", "*.jpg *.jpeg *.png"), ("All files", "*.*")],
        )
        if not path:
            return

        try:
            upload = PhotoUpload.from_path(path)
        except OSError as e:
            messagebox.showerror("Upload failed", f"Could not read file.\n\n{e}")
            self.set_status("Upload failed.")
            return

        check = validate_file(upload, PHOTO_REQUIREMENTS)
        if not check.valid:
            messagebox.showerror("Invalid file", check.message)
            self.set_status("Upload rejected.")
            return

        self.state.input_path = path
        self.state.upload = upload
        self.state.clear_result()

        try:
            original = Image.open(io.BytesIO(upload.data))
            original.load()
            self.original_canvas.set_image(original)
            self.original_meta.configure(text=f"File: {os.path.basename(path)}   Size: {original.width}x{original.height}")
        except OSError:
            self.original_canvas.clear()
            self.original_meta.configure(text=f"File: {os.path.basename(path)} (preview unavailable)")

        self.processed_canvas.clear()
        self.processed_meta.configure(text="Processing…")
        self._render_validation_report()
        self.on_process()

    # ---------- Process ----------

    def on_process(self) -> None:
        upload = self.state.upload
        if upload is None:
            messagebox.showwarning("No input", "Upload a photo first.")
            return

        config = self._config_from_ui()
        run_id = self.state.start_run()
        self._set_processing_ui(True)
        self.set_status("Processing…")

        def worker() -> None:
            result = PhotoPipeline(config=config).process_image(upload)
            self.master.after(0, lambda: self._finish_run(run_id, result))

        threading.Thread(target=worker, daemon=True).start()

    def _finish_run(self, run_id: int, result: ProcessedImageResult) -> None:
        if not self.state.accept_result(run_id, result):
            logger.info("Discarding stale result of run %d", run_id)
            return

        self._set_processing_ui(False)
        self._render_validation_report()

        if result.processed_png is None:
            self.processed_canvas.clear()
            self.processed_meta.configure(text="No processed image.")
            self.set_status("Processing failed. See the Validation tab.")
            return

        try:
            result.save(str(self.temp_paths.preview_for(run_id)), temporary=True)
        except OSError as e:
            logger.warning("Could not write preview file: %s", e)
        self.processed_canvas.set_image(result.processed.to_image())
        self.var_zoom.set(100)
        self.processed_meta.configure(
            text=f"Size: {result.processed.width}x{result.processed.height}   Method: {result.strategy}"
        )
        self.set_status(f"Processing complete ({result.report.status_text()})")

    # ---------- Report / save / reset ----------

    def on_copy_report(self) -> None:
        result = self.state.result
        if result is None:
            messagebox.showinfo("No report", "Process a photo first.")
            return
        self.master.clipboard_clear()
        self.master.clipboard_append(format_report_text(result.report))
        self.set_status("Copied validation report.")

    def on_save(self) -> None:
        result = self.state.result
        if result is None or result.processed_png is None:
            messagebox.showwarning("Not ready", "Process a photo first.")
            return
        path = filedialog.asksaveasfilename(
            title="Save photo",
            defaultextension=".png",
            initialfile=DEFAULT_EXPORT_NAME,
            filetypes=[("PNG", "*.png")],
        )
        if not path:
            return
        try:
            result.save(path)
        except OSError as e:
            messagebox.showerror("Save failed", str(e))
            return
        self.set_status(f"Saved {os.path.basename(path)}.")

    def on_reset(self) -> None:
        self.state.reset()
        self.temp_paths.cleanup()
        self.original_canvas.clear()
        self.processed_canvas.clear()
        self.original_meta.configure(text="No file loaded.")
        self.processed_meta.configure(text="Not processed yet.")
        self._render_validation_report()
        self.progress.stop()
        self._set_buttons_initial_state()
        self.on_restore_defaults()
        self.set_status("Reset complete.")

    def on_restore_defaults(self) -> None:
        self.state.config = self.state.defaults
        cfg = self.state.config
        self.var_tolerance.set(cfg.heuristic.tolerance)
        self.var_estimator.set(cfg.heuristic.estimator)
        self.var_use_model.set(cfg.enable_model)
        self.var_force_alt.set(cfg.force_alternative_method)
        self.set_status("Defaults restored.")


def run() -> None:
    configure_logging()
    root = tk.Tk()
    root.title("USCIS Photo")
    root.geometry("1100x700")
    root.minsize(900, 600)

    style = ttk.Style(root)
    if "clam" in style.theme_names():
        style.theme_use("clam")

    startup = PipelineConfig.from_env()
    state = AppState(config=startup, defaults=startup)
    app = PhotoApp(root, state)

    def on_close() -> None:
        state.reset()
        app.temp_paths.cleanup()
        root.destroy()

    root.protocol("WM_DELETE_WINDOW", on_close)
    root.mainloop()
