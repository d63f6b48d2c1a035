from nicegui import ui, events
import asyncio
import logging
import queue
import base64
import binascii
from typing import Optional

from attendance_scanner.core import config_manager
from attendance_scanner.services.connectivity import connectivity_monitor
from attendance_scanner.services.exporter import build_csv, export_filename
from attendance_scanner.services.scanner.manager import ScanEvent, ScanState, scanner_manager
from attendance_scanner.services.session_store import session_store

logger = logging.getLogger(__name__)

JS_CAMERA_CODE = """
<script>
window.scannerVideo = null;
window.scannerCanvas = null;
window.scannerStream = null;
window.scanner_js_loaded = true;

function initScanner() {
    window.scannerVideo = document.getElementById('scanner-video');
    window.scannerCanvas = document.createElement('canvas');
}

async function startCamera() {
    if (window.scannerStream) stopCamera();
    initScanner();
    if (!window.scannerVideo) return false;

    try {
        window.scannerStream = await navigator.mediaDevices.getUserMedia({
            video: {
                facingMode: 'environment',
                width: { ideal: 1280 },
                height: { ideal: 720 }
            }
        });
        window.scannerVideo.srcObject = window.scannerStream;
        await window.scannerVideo.play();
        return true;
    } catch (err) {
        console.error("Error accessing camera:", err);
        return false;
    }
}

function stopCamera() {
    if (window.scannerStream) {
        window.scannerStream.getTracks().forEach(track => track.stop());
        window.scannerStream = null;
    }
    if (window.scannerVideo) {
        window.scannerVideo.srcObject = null;
        window.scannerVideo = null;
    }
}

function captureFrame() {
    const video = window.scannerVideo;
    if (!video || !video.videoWidth || !window.scannerCanvas) return null;
    const canvas = window.scannerCanvas;
    canvas.width = video.videoWidth;
    canvas.height = video.videoHeight;
    canvas.getContext('2d').drawImage(video, 0, 0);
    return canvas.toDataURL('image/jpeg', 0.8).split(',')[1];
}

window.addEventListener('online', () => emitEvent('connectivity', {online: true}));
window.addEventListener('offline', () => emitEvent('connectivity', {online: false}));
</script>
"""

STATUS_STYLES = {
    ScanState.READY: ('bg-slate-800', 'photo_camera'),
    ScanState.CAPTURING: ('bg-blue-500', None),
    ScanState.CLASSIFYING: ('bg-blue-500', None),
    ScanState.ACCEPTED: ('bg-green-500', 'check_circle'),
    ScanState.REJECTED: ('bg-red-500', 'cancel'),
    ScanState.DUPLICATE: ('bg-amber-500', 'warning'),
    ScanState.CALL_FAILED: ('bg-red-500', 'cancel'),
}


class ScanPage:
    def __init__(self):
        self.config = config_manager.load_config()
        self.event_queue: "queue.Queue" = queue.Queue()
        self.is_active = False
        self.camera_started = False
        self.custom_slot = ''
        self.reset_dialog = None
        self.client = None
        self.last_online = True

    # --- Listeners (may fire outside the client context, so only enqueue) ---

    def on_scanner_event(self, event: ScanEvent):
        if not self.is_active: return
        self.event_queue.put(('scan', event))

    def on_connectivity_change(self, online: bool):
        if not self.is_active: return
        self.event_queue.put(('connectivity', online))

    def on_connectivity_event(self, e: events.GenericEventArguments):
        online = bool((e.args or {}).get('online', True))
        connectivity_monitor.set_online(online)

    async def event_consumer(self):
        """Consumes events from the local queue and updates UI."""
        try:
            refresh_status = refresh_records = refresh_banner = refresh_camera = False
            while not self.event_queue.empty():
                try:
                    kind, payload = self.event_queue.get_nowait()
                except queue.Empty:
                    break

                if kind == 'scan':
                    refresh_status = True
                    if payload.state == ScanState.ACCEPTED:
                        refresh_records = True
                        ui.notify(f"Added: {payload.record.student_name}", type='positive')
                    elif payload.state == ScanState.DUPLICATE:
                        ui.notify(payload.message, type='warning')
                elif payload != self.last_online:
                    self.last_online = payload
                    refresh_banner = refresh_camera = True
                else:
                    refresh_banner = True

            if refresh_status: self.render_status_bar.refresh()
            if refresh_records:
                self.render_export_button.refresh()
                self.render_attendance_list.refresh()
            if refresh_banner:
                self.render_network_banner.refresh()
            if refresh_camera:
                self.render_camera_area.refresh()
                if connectivity_monitor.is_online and self.camera_started:
                    # The video element was rebuilt, reattach the stream
                    await self.start_camera()
        except Exception as e:
            logger.error(f"Error in event_consumer: {e}")

    # --- Session lifecycle ---

    async def select_slot(self, slot_name: str):
        try:
            session_store.start_session(slot_name)
        except ValueError as e:
            ui.notify(str(e), type='warning')
            return
        self.render_body.refresh()
        # Give the browser a moment to mount the video element
        await asyncio.sleep(0.5)
        await self.start_camera()

    async def confirm_reset(self):
        if session_store.records and self.reset_dialog:
            self.reset_dialog.open()
        else:
            await self.reset_session()

    async def reset_session(self):
        if self.reset_dialog:
            self.reset_dialog.close()
        scanner_manager.stop()
        await self.stop_camera()
        session_store.reset()
        self.render_body.refresh()

    # --- Camera ---

    async def capture_frame(self) -> Optional[bytes]:
        data = await self.client.run_javascript('captureFrame()', timeout=5.0)
        if not data:
            return None
        try:
            return base64.b64decode(data)
        except (binascii.Error, ValueError) as e:
            logger.error(f"Received malformed frame from browser: {e}")
            return None

    async def start_camera(self):
        if not session_store.has_session or not connectivity_monitor.is_online:
            return
        try:
            if await self.client.run_javascript('startCamera()', timeout=20.0):
                self.camera_started = True
                scanner_manager.start(self.capture_frame)
            else:
                ui.notify("Camera access denied", type='negative')
        except Exception as e:
            logger.error(f"Error starting camera: {e}")
            ui.notify(f"Error starting camera: {e}", type='negative')

    async def stop_camera(self):
        self.camera_started = False
        try:
            await self.client.run_javascript('stopCamera()')
        except Exception as e:
            logger.error(f"Error stopping camera: {e}")

    async def init_connectivity(self):
        try:
            online = await self.client.run_javascript('navigator.onLine', timeout=5.0)
            connectivity_monitor.initialize(bool(online))
            self.last_online = connectivity_monitor.is_online
            self.render_network_banner.refresh()
            self.render_camera_area.refresh()
        except Exception as e:
            logger.error(f"Error reading connectivity state: {e}")

    # --- Export ---

    def export_csv(self):
        records = session_store.records
        if not records:
            ui.notify("No records to export", type='warning')
            return
        content = build_csv(records)
        filename = export_filename(session_store.slot_name)
        ui.download.content(content.encode('utf-8'), filename, media_type='text/csv')
        logger.info(f"Exported {len(records)} records to {filename}")

    # --- Rendering ---

    @ui.refreshable
    def render_body(self):
        if not session_store.has_session:
            self.render_slot_selector()
        else:
            self.render_scanner_view()

    def render_slot_selector(self):
        with ui.column().classes('max-w-2xl mx-auto py-8 px-4 w-full gap-6'):
            with ui.column().classes('w-full items-center gap-1'):
                ui.label(f"{self.config['institution_name']} Attendance").classes('text-2xl font-bold text-slate-800')
                ui.label('Select session slot to begin scanning').classes('text-slate-500')

            with ui.card().classes('w-full shadow-xl'):
                ui.label('Quick Select').classes('text-lg font-semibold text-slate-700')
                with ui.grid(columns=2).classes('w-full gap-3'):
                    for preset in self.config['slot_presets']:
                        with ui.button(on_click=lambda p=preset: self.select_slot(p['name'])).props('outline no-caps').classes('h-auto py-4'):
                            with ui.column().classes('items-start gap-1'):
                                with ui.row().classes('items-center gap-2'):
                                    ui.icon(preset.get('icon', 'schedule'))
                                    ui.label(preset['name']).classes('font-semibold')
                                ui.label(preset.get('time', '')).classes('text-xs text-slate-400')

            with ui.card().classes('w-full shadow-xl'):
                ui.label('Custom Slot').classes('text-lg font-semibold text-slate-700')
                with ui.row().classes('w-full items-center gap-2'):
                    slot_input = ui.input(placeholder='e.g. Lab, Tutorial...').bind_value(self, 'custom_slot').classes('flex-grow')
                    slot_input.on('keydown.enter', lambda: self.custom_slot.strip() and self.select_slot(self.custom_slot))
                    ui.button('Start', on_click=lambda: self.select_slot(self.custom_slot)) \
                        .bind_enabled_from(self, 'custom_slot', backward=lambda v: bool(v and v.strip()))

    def render_scanner_view(self):
        with ui.row().classes('w-full items-center justify-between bg-white border-b px-4 py-3 shadow-sm'):
            ui.button('Change Slot', icon='arrow_back', on_click=self.confirm_reset).props('flat no-caps')
            with ui.column().classes('gap-0 items-center'):
                ui.label(f"{self.config['institution_name']} Attendance").classes('text-xs font-bold uppercase')
                ui.label(session_store.slot_name).classes('text-[10px] text-blue-600 font-bold uppercase')
            ui.button(icon='refresh', on_click=lambda: ui.navigate.reload()).props('flat')

        with ui.column().classes('max-w-2xl mx-auto px-4 py-6 w-full gap-6'):
            self.render_network_banner()
            self.render_camera_area()
            self.render_export_button()
            self.render_attendance_list()
            ui.label(self.config['institution_name'].upper()).classes('w-full text-center text-[10px] text-slate-400')

        with ui.dialog() as self.reset_dialog, ui.card():
            ui.label('Clear all current data?')
            with ui.row().classes('w-full justify-end'):
                ui.button('Cancel', on_click=self.reset_dialog.close).props('flat')
                ui.button('Clear', on_click=self.reset_session).props('color=negative')

    @ui.refreshable
    def render_network_banner(self):
        if not connectivity_monitor.is_online:
            with ui.row().classes('w-full bg-amber-50 border border-amber-200 p-4 rounded-xl gap-3 text-amber-800 no-wrap'):
                ui.icon('error_outline')
                ui.label('Offline Mode: Scanning requires internet. Existing records are safe.').classes('text-sm')
        elif connectivity_monitor.banner_visible:
            with ui.row().classes('w-full bg-green-500 text-white px-4 py-2 rounded-full items-center gap-2 justify-center'):
                ui.icon('wifi')
                ui.label('Back Online').classes('text-sm font-medium')

    @ui.refreshable
    def render_camera_area(self):
        if not connectivity_monitor.is_online:
            with ui.column().classes('w-full bg-slate-100 p-12 rounded-2xl items-center border-2 border-dashed'):
                ui.icon('wifi_off').classes('text-5xl text-slate-300')
                ui.label('Connect to internet to enable scanning').classes('text-slate-500')
            return

        with ui.card().classes('w-full p-0 overflow-hidden bg-black rounded-2xl shadow-2xl'):
            ui.html('<video id="scanner-video" autoplay playsinline muted style="width: 100%; aspect-ratio: 4/3; object-fit: cover;"></video>', sanitize=False)
        self.render_status_bar()

    @ui.refreshable
    def render_status_bar(self):
        state = scanner_manager.get_status()
        color, icon = STATUS_STYLES[state]
        with ui.row().classes(f'w-full p-4 rounded-xl text-white items-center gap-3 {color}'):
            if icon:
                ui.icon(icon)
            else:
                ui.spinner(size='sm', color='white')
            ui.label(scanner_manager.status_message).classes('font-semibold')

    @ui.refreshable
    def render_export_button(self):
        count = len(session_store.records)
        btn = ui.button(f'Export CSV ({count} Students)', icon='table_view', on_click=self.export_csv) \
            .classes('w-full h-16 text-lg')
        if count == 0:
            btn.disable()

    @ui.refreshable
    def render_attendance_list(self):
        records = session_store.records
        with ui.card().classes('w-full p-0 shadow-lg'):
            with ui.row().classes('w-full items-center justify-between p-4 border-b'):
                with ui.row().classes('items-center gap-2'):
                    ui.icon('groups', color='primary')
                    ui.label('Recent Scans').classes('font-semibold text-slate-700')
                ui.badge(str(len(records))).props('color=blue-1 text-color=blue-9')

            if not records:
                with ui.column().classes('w-full p-12 items-center text-slate-400'):
                    ui.icon('groups').classes('text-5xl opacity-20')
                    ui.label('Start scanning ID cards')
                return

            with ui.scroll_area().classes('w-full h-96'):
                for i, r in enumerate(records):
                    with ui.row().classes('w-full p-4 items-center gap-4 border-b no-wrap'):
                        ui.label(str(len(records) - i)).classes('w-8 h-8 rounded-full bg-blue-100 text-blue-600 text-center leading-8 font-bold text-sm')
                        with ui.column().classes('gap-0'):
                            ui.label(r.student_name).classes('font-bold text-slate-800')
                            with ui.row().classes('gap-3 text-xs text-slate-500'):
                                ui.label(f"# {r.identifier}")
                                ui.label(r.capture_time)


def scan_page():
    page = ScanPage()
    page.client = ui.context.client

    def cleanup():
        # Runs once the client is gone for good, not on a socket drop it reconnects from
        scanner_manager.unregister_listener(page.on_scanner_event)
        connectivity_monitor.unregister_listener(page.on_connectivity_change)
        page.is_active = False
        # Other tabs may own the loop
        scanner_manager.release(page.capture_frame)

    page.client.on_delete(cleanup)

    scanner_manager.register_listener(page.on_scanner_event)
    connectivity_monitor.register_listener(page.on_connectivity_change)
    page.is_active = True

    ui.add_head_html(JS_CAMERA_CODE)
    ui.on('connectivity', page.on_connectivity_event)

    page.render_body()

    ui.timer(0.1, page.init_connectivity, once=True)
    if session_store.has_session:
        # Restored session: resume scanning straight away
        ui.timer(1.0, page.start_camera, once=True)

    ui.timer(config_manager.get_scan_interval(), scanner_manager.tick)
    ui.timer(0.1, page.event_consumer)

    probe_interval = float(page.config.get('connectivity_probe_interval') or 0)
    if probe_interval > 0:
        ui.timer(probe_interval, connectivity_monitor.probe)
