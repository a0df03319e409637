"""Dashboard HTML with inline CSS and vanilla JS."""


def get_dashboard_html() -> str:
    return """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Agent Inbox</title>
<style>
  :root {
    --bg: #0d1117; --surface: #161b22; --border: #30363d;
    --text: #e6edf3; --text-muted: #8b949e; --text-dim: #6e7681;
    --running: #58a6ff; --needs_attention: #d29922; --completed: #3fb950;
    --failed: #f85149; --exited: #6e7681;
  }
  * { margin: 0; padding: 0; box-sizing: border-box; }
  body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Helvetica, Arial, sans-serif;
         background: var(--bg); color: var(--text); line-height: 1.5; }
  .container { max-width: 960px; margin: 0 auto; padding: 24px 16px; }

  header { display: flex; justify-content: space-between; align-items: center;
           padding-bottom: 16px; border-bottom: 1px solid var(--border); margin-bottom: 24px; }
  header h1 { font-size: 20px; font-weight: 600; }
  header select { background: var(--surface); color: var(--text); border: 1px solid var(--border);
                  padding: 6px 12px; border-radius: 6px; font-size: 14px; cursor: pointer; }

  .summary { display: flex; gap: 16px; align-items: center; margin-bottom: 24px; flex-wrap: wrap; }
  .stat { display: flex; align-items: center; gap: 6px; font-size: 14px; }
  .stat .dot { width: 10px; height: 10px; border-radius: 50%; display: inline-block; }

  .section-title { font-size: 12px; font-weight: 600; text-transform: uppercase;
                   color: var(--text-muted); margin: 20px 0 8px; }
  .task-list { display: flex; flex-direction: column; gap: 2px; }
  .task-card { background: var(--surface); border: 1px solid var(--border);
               border-radius: 8px; padding: 12px 16px; }
  .task-card.needs_attention { border-left: 3px solid var(--needs_attention); }
  .task-header { display: flex; align-items: center; gap: 10px; }
  .badge { display: inline-block; padding: 2px 10px; border-radius: 12px; font-size: 11px;
           font-weight: 600; background: var(--bg); }
  .task-title { font-weight: 600; font-size: 14px; }
  .task-id { font-size: 12px; color: var(--text-dim); font-family: monospace; margin-left: auto; }
  .task-details { margin-top: 6px; font-size: 13px; color: var(--text-muted); display: flex;
                  flex-direction: column; gap: 3px; }
  .task-details code { background: var(--bg); padding: 1px 5px; border-radius: 3px; font-size: 12px; }

  .empty { text-align: center; padding: 48px; color: var(--text-muted); }
  .empty h3 { margin-bottom: 8px; }
</style>
</head>
<body>
<div class="container">
  <header>
    <h1>Agent Inbox</h1>
    <select id="status-filter">
      <option value="">All tasks</option>
      <option value="needs_attention">Needs attention</option>
      <option value="running">Running</option>
      <option value="completed">Completed</option>
      <option value="failed">Failed</option>
      <option value="exited">Exited</option>
    </select>
  </header>
  <div id="summary"></div>
  <div id="content"><div class="empty"><h3>Loading...</h3></div></div>
</div>

<script>
const ORDER = ['needs_attention', 'running', 'completed', 'failed', 'exited'];
let refreshTimer = null;

async function fetchJSON(path) {
  const res = await fetch(path);
  if (!res.ok) return null;
  return res.json();
}

async function loadDashboard() {
  const status = document.getElementById('status-filter').value;
  const [tasks, summary] = await Promise.all([
    fetchJSON('/api/tasks' + (status ? `?status=${status}` : '')),
    fetchJSON('/api/summary'),
  ]);

  if (summary) {
    document.getElementById('summary').innerHTML = '<div class="summary">' +
      ORDER.map(s => `<span class="stat"><span class="dot" style="background:var(--${s})"></span>
        ${summary.counts[s]} ${s.replace('_', ' ')}</span>`).join('') + '</div>';
  }

  const content = document.getElementById('content');
  if (!tasks || tasks.length === 0) {
    content.innerHTML = '<div class="empty"><h3>No tasks</h3><p>Nothing is waiting on you.</p></div>';
    return;
  }

  let html = '';
  for (const s of ORDER) {
    const section = tasks.filter(t => t.status === s);
    if (section.length === 0) continue;
    html += `<div class="section-title">${s.replace('_', ' ')}</div><div class="task-list">`;
    html += section.map(renderTask).join('');
    html += '</div>';
  }
  content.innerHTML = html;
}

function renderTask(task) {
  let details = '';
  if (task.attention_reason) {
    details += `<div>Waiting: <code>${esc(task.attention_reason)}</code></div>`;
  }
  if (task.exit_code !== null) {
    details += `<div>Exit code: <code>${task.exit_code}</code></div>`;
  }
  if (task.context && task.context.project_path) {
    details += `<div>Path: <code>${esc(task.context.project_path)}</code></div>`;
  }
  if (task.updated_at) {
    details += `<div>Updated: ${new Date(task.updated_at).toLocaleString()}</div>`;
  }

  return `<div class="task-card ${task.status}">
    <div class="task-header">
      <span class="badge" style="color:var(--${task.status})">${esc(task.agent_type)}</span>
      <span class="task-title">${esc(task.title)}</span>
      <span class="task-id">${esc(task.task_id)}</span>
    </div>
    ${details ? `<div class="task-details">${details}</div>` : ''}
  </div>`;
}

function esc(s) {
  if (!s) return '';
  const d = document.createElement('div');
  d.textContent = s;
  return d.innerHTML;
}

document.getElementById('status-filter').addEventListener('change', loadDashboard);

function startAutoRefresh() {
  if (refreshTimer) clearInterval(refreshTimer);
  refreshTimer = setInterval(loadDashboard, 5000);
}

loadDashboard();
startAutoRefresh();
</script>
</body>
</html>"""
