"""
Task Monitor Dashboard
Polls the scheduler API, reconciles, and paints connected browsers over a WebSocket.

Run: python -m taskmon, or uvicorn --factory taskmon.dashboard:create_app
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, Response
from pydantic import BaseModel

from taskmon.actions import FOLLOWUP_DELAY_MS, ActionGateway
from taskmon.client import DEFAULT_TIMEOUT, SchedulerApiError, SchedulerClient
from taskmon.models import ALL, ActionResult, Filters, Priority, RenderView, TaskDetail, TaskStatus
from taskmon.poller import REFRESH_INTERVAL_MS, PollScheduler
from taskmon.sink import WebSocketSink

log = logging.getLogger(__name__)

BACKEND_URL = os.getenv("TASKMON_BACKEND_URL", "http://localhost:8080")
REFRESH_MS = int(os.getenv("TASKMON_REFRESH_MS", str(REFRESH_INTERVAL_MS)))
FOLLOWUP_MS = int(os.getenv("TASKMON_FOLLOWUP_MS", str(FOLLOWUP_DELAY_MS)))
REQUEST_TIMEOUT = float(os.getenv("TASKMON_REQUEST_TIMEOUT", str(DEFAULT_TIMEOUT)))

STATUS_VALUES = {s.value for s in TaskStatus}
PRIORITY_VALUES = {p.value for p in Priority}


class ToggleRequest(BaseModel):
    enabled: bool


class AddTaskRequest(BaseModel):
    name: str
    priority: str = "MEDIUM"
    duration: int = 1000


class SimulationRequest(BaseModel):
    scenario: str = "mixed"
    count: int = 10
    interval: int = 500


class Monitor:
    """One dashboard session: client, poller, gateway and the browsers watching it."""

    def __init__(self, client: SchedulerClient, interval_ms: int = REFRESH_MS,
                 followup_ms: int = FOLLOWUP_MS):
        self.client = client
        self.sink = WebSocketSink()
        self.poller = PollScheduler(client, self.sink, interval_ms=interval_ms)
        # No browser yet, so nothing is visible and nothing polls
        self.poller.visible = False
        self.gateway = ActionGateway(client, self.poller, followup_delay_ms=followup_ms)
        self.visibility: Dict[WebSocket, bool] = {}

    def set_visibility(self, websocket: WebSocket, visible: Optional[bool]):
        if visible is None:
            self.visibility.pop(websocket, None)
        else:
            self.visibility[websocket] = visible
        self.poller.set_visible(any(self.visibility.values()))

    async def close(self):
        self.gateway.close()
        await self.poller.shutdown()
        await self.client.close()


def create_app(monitor: Optional[Monitor] = None) -> FastAPI:
    if monitor is None:
        monitor = Monitor(SchedulerClient(BACKEND_URL, timeout=REQUEST_TIMEOUT))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info(f"Dashboard watching {monitor.client.base_url} every {monitor.poller.interval:.1f}s")
        yield
        await monitor.close()

    app = FastAPI(title="Task Monitor", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.monitor = monitor
    poller = monitor.poller
    gateway = monitor.gateway

    # ── WebSocket ──────────────────────────────────────────────────────────────

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await websocket.accept()
        await monitor.sink.connect(websocket)
        try:
            while True:
                message = await websocket.receive_json()
                if message.get("type") == "visibility":
                    monitor.set_visibility(websocket, not message.get("hidden", False))
        except WebSocketDisconnect:
            pass
        except Exception as e:
            log.debug(f"WebSocket closed: {e}")
        finally:
            monitor.sink.disconnect(websocket)
            monitor.set_visibility(websocket, None)

    # ── Controls ───────────────────────────────────────────────────────────────

    @app.post("/api/refresh")
    async def refresh_now():
        poller.refresh_now()
        return {"ok": True}

    @app.post("/api/auto_refresh")
    async def auto_refresh(req: ToggleRequest):
        poller.toggle(req.enabled)
        return {"auto_refresh": poller.auto_refresh, "armed": poller.armed}

    @app.post("/api/filters", response_model=RenderView)
    async def set_filters(filters: Filters):
        if filters.status != ALL and filters.status not in STATUS_VALUES:
            raise HTTPException(status_code=400, detail=f"unknown status filter: {filters.status}")
        if filters.priority != ALL and filters.priority not in PRIORITY_VALUES:
            raise HTTPException(status_code=400, detail=f"unknown priority filter: {filters.priority}")
        return await poller.apply_filters(filters)

    @app.get("/api/tasks/{task_id}", response_model=TaskDetail)
    async def task_detail(task_id: int):
        detail = poller.task_detail(task_id)
        if detail is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return detail

    # ── Actions ────────────────────────────────────────────────────────────────

    @app.post("/api/tasks", response_model=ActionResult)
    async def add_task(req: AddTaskRequest):
        try:
            return await gateway.add_task(req.name, req.priority, req.duration)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.post("/api/tasks/{task_id}/cancel", response_model=ActionResult)
    async def cancel_task(task_id: int):
        return await gateway.cancel_task(task_id)

    @app.post("/api/simulate", response_model=ActionResult)
    async def simulate(req: SimulationRequest):
        return await gateway.run_simulation(req.scenario, req.count, req.interval)

    @app.get("/api/export/{fmt}")
    async def export(fmt: str):
        try:
            payload = await gateway.export_snapshot(fmt)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"unsupported export format: {fmt}")
        except SchedulerApiError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return Response(
            content=payload.content,
            media_type=payload.media_type,
            headers={"Content-Disposition": f'attachment; filename="{payload.filename}"'},
        )

    @app.get("/health")
    async def health():
        return poller.health()

    @app.get("/", response_class=HTMLResponse)
    async def index():
        return HTML

    return app


# ── HTML ───────────────────────────────────────────────────────────────────────

HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Task Monitor</title>
<script src="https://cdn.jsdelivr.net/npm/chart.js"></script>
<style>
body { background:#0f172a; color:#f1f5f9; font-family:system-ui,sans-serif; margin:0; padding:16px; }
header { display:flex; gap:12px; align-items:center; }
#indicator { font-size:20px; color:#94a3b8; }
.cards { display:grid; grid-template-columns:repeat(6,1fr); gap:8px; margin:12px 0; }
.card, .worker-card { background:#1e293b; border-radius:6px; padding:10px; }
.card b { display:block; font-size:22px; }
.charts { display:grid; grid-template-columns:2fr 1fr 2fr; gap:8px; height:220px; }
table { width:100%; border-collapse:collapse; margin-top:12px; }
td, th { padding:6px; border-bottom:1px solid #334155; text-align:left; }
tr.new-task { background:rgba(46,204,113,0.15); }
.priority-critical { color:#e11d48; } .priority-high { color:#e74c3c; }
.priority-medium { color:#f39c12; } .priority-low { color:#3498db; }
.status-running { color:#f39c12; } .status-completed { color:#2ecc71; }
.status-failed, .status-timeout { color:#e74c3c; } .status-pending { color:#3498db; }
.bar { background:#334155; height:8px; border-radius:4px; } .fill { background:#4a90e2; height:8px; border-radius:4px; }
#workers { display:flex; gap:8px; flex-wrap:wrap; }
#notice { min-height:1.2em; }
</style>
</head>
<body>
<header>
  <h2>Task Monitor</h2><span id="indicator">&#9679;</span><span id="updated"></span>
  <button id="refresh">Refresh</button><button id="auto">Auto: ON</button>
  <button onclick="location.href='/api/export/csv'">Export CSV</button>
  <button onclick="location.href='/api/export/json'">Export JSON</button>
</header>
<div class="cards">
  <div class="card">Total<b id="total_tasks">0</b></div><div class="card">Running<b id="running_tasks">0</b></div>
  <div class="card">Pending<b id="pending_tasks">0</b></div><div class="card">Completed<b id="completed_tasks">0</b></div>
  <div class="card">Failed<b id="failed_tasks">0</b></div><div class="card">Workers<b id="active_workers">0</b></div>
</div>
<div class="charts"><canvas id="throughput"></canvas><canvas id="distribution"></canvas><canvas id="utilization"></canvas></div>
<div id="workers"></div>
<form id="add-form">
  <input name="name" placeholder="Task name"><select name="priority">
  <option>LOW</option><option selected>MEDIUM</option><option>HIGH</option><option>CRITICAL</option></select>
  <input name="duration" type="number" value="1000"><button>Add task</button>
</form>
<form id="sim-form">
  <input name="scenario" value="mixed"><input name="count" type="number" value="10">
  <input name="interval" type="number" value="500"><button>Simulate</button>
</form>
<div id="notice"></div>
<select id="status-filter"><option>all</option><option>PENDING</option><option>RUNNING</option>
  <option>COMPLETED</option><option>FAILED</option><option>TIMEOUT</option></select>
<select id="priority-filter"><option>all</option><option>LOW</option><option>MEDIUM</option>
  <option>HIGH</option><option>CRITICAL</option></select>
<table><thead><tr><th>ID</th><th>Name</th><th>Priority</th><th>Status</th><th>Progress</th>
  <th>Worker</th><th>Created</th><th></th></tr></thead><tbody id="rows"></tbody></table>
<script>
const $ = id => document.getElementById(id);
const esc = t => { const d = document.createElement("div"); d.textContent = t; return d.innerHTML; };
const line = (id, type, sets) => new Chart($(id), {type, data:{labels:[], datasets:sets},
  options:{responsive:true, maintainAspectRatio:false, animation:false}});
const charts = {
  throughput: line("throughput", "line", [{label:"Tasks Completed", data:[], fill:true, tension:0.4}]),
  distribution: line("distribution", "doughnut", [{data:[0,0,0,0]}]),
  utilization: line("utilization", "bar", [{label:"Running", data:[], stack:"w"}, {label:"Completed", data:[], stack:"w"}]),
};

const paint = {
  stats(d) {
    for (const k of ["total_tasks","running_tasks","pending_tasks","completed_tasks","failed_tasks","active_workers"])
      $(k).textContent = d.status[k];
    $("workers").innerHTML = d.workers.map(w =>
      `<div class="worker-card"><b>${w.label}</b> ${w.active ? "Active" : "Inactive"} · ${w.running} running · ${w.completed} done</div>`
    ).join("") || "No workers";
    $("updated").textContent = "Last updated: " + new Date(d.updated_at).toLocaleTimeString();
    $("indicator").style.color = "#2ecc71";
  },
  tasks(d) {
    if (!d.rows.length) { $("rows").innerHTML = '<tr><td colspan="8">No tasks found</td></tr>'; return; }
    $("rows").innerHTML = d.rows.map(r => `<tr class="${r.is_new ? "new-task" : ""}">
      <td>${r.task.id}</td><td><a href="#" onclick="detail(${r.task.id})">${esc(r.task.name)}</a></td>
      <td class="${r.priority_token}">${r.task.priority}</td><td class="${r.status_token}">${r.task.status}</td>
      <td><div class="bar"><div class="fill" style="width:${r.progress}%"></div></div></td>
      <td>${r.worker_label}</td><td>${r.created_label}</td>
      <td><button ${r.cancellable ? "" : "disabled"} onclick="cancelTask(${r.task.id})">Cancel</button></td></tr>`).join("");
  },
  charts(d) {
    const t = charts.throughput.data;
    t.labels = d.throughput.map(p => p.label); t.datasets[0].data = d.throughput.map(p => p.value);
    const s = charts.distribution.data;
    s.labels = Object.keys(d.status_distribution); s.datasets[0].data = Object.values(d.status_distribution);
    const u = charts.utilization.data;
    u.labels = d.worker_labels; u.datasets[0].data = d.worker_running; u.datasets[1].data = d.worker_completed;
    Object.values(charts).forEach(c => c.update("none"));
  },
  error(d) { $("indicator").style.color = "#e74c3c"; },
};

let ws, wsRetryT = 2000;
function connectWS() {
  const proto = location.protocol === "https:" ? "wss:" : "ws:";
  ws = new WebSocket(`${proto}//${location.host}/ws`);
  ws.onopen = () => { wsRetryT = 2000; sendVisibility(); };
  ws.onmessage = e => { const m = JSON.parse(e.data); (paint[m.type] || (() => {}))(m.data); };
  ws.onclose = () => { setTimeout(connectWS, wsRetryT); wsRetryT = Math.min(wsRetryT*1.5, 15000); };
}
function sendVisibility() {
  if (ws && ws.readyState === 1) ws.send(JSON.stringify({type:"visibility", hidden:document.hidden}));
}
document.addEventListener("visibilitychange", sendVisibility);

async function post(url, body) {
  const res = await fetch(url, {method:"POST", headers:{"Content-Type":"application/json"},
    body: body === undefined ? undefined : JSON.stringify(body)});
  return res.json();
}
function notify(r) {
  $("notice").textContent = r.success ? "✓ " + r.message : "✗ " + (r.error || r.detail);
  $("notice").style.color = r.success ? "#2ecc71" : "#e74c3c";
}
async function cancelTask(id) {
  if (!confirm(`Cancel task ${id}?`)) return;
  const r = await post(`/api/tasks/${id}/cancel`);
  if (!r.success) alert("Error: " + r.error); else notify(r);
}
async function detail(id) {
  const d = await fetch(`/api/tasks/${id}`).then(r => r.json());
  if (d.display) alert(`${d.task.name}\\nWait: ${d.display.wait}\\nExec: ${d.display.exec}\\nTurnaround: ${d.display.turnaround}`);
}
function filters() { post("/api/filters", {status:$("status-filter").value, priority:$("priority-filter").value}); }
$("status-filter").onchange = filters; $("priority-filter").onchange = filters;
$("refresh").onclick = () => post("/api/refresh");
$("auto").onclick = async () => {
  const on = $("auto").textContent.endsWith("OFF");
  const r = await post("/api/auto_refresh", {enabled:on});
  $("auto").textContent = "Auto: " + (r.auto_refresh ? "ON" : "OFF");
};
$("add-form").onsubmit = async e => {
  e.preventDefault(); const f = new FormData(e.target);
  notify(await post("/api/tasks", {name:f.get("name"), priority:f.get("priority"), duration:+f.get("duration")}));
};
$("sim-form").onsubmit = async e => {
  e.preventDefault(); const f = new FormData(e.target);
  notify(await post("/api/simulate", {scenario:f.get("scenario"), count:+f.get("count"), interval:+f.get("interval")}));
};

connectWS();
</script>
</body>
</html>
"""
