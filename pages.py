import html
import json
from typing import Optional, List, Dict, Any

from funnel_config import FunnelConfig, PageConfig, FUNNEL_PAGES

_STYLE = """<style>
  *{box-sizing:border-box;}
  body{margin:0;min-height:100vh;background:#f8fafc;color:#0f172a;font-family:system-ui,-apple-system,Segoe UI,Roboto,Arial,sans-serif;}
  .wrap{max-width:980px;margin:0 auto;padding:24px 18px;}
  .card{background:#fff;border:1px solid #e2e8f0;border-radius:16px;padding:18px;margin-bottom:14px;box-shadow:0 6px 18px rgba(15,23,42,.06);}
  .steps{display:flex;gap:6px;align-items:center;font-size:13px;color:#64748b;}
  .dot{width:8px;height:8px;border-radius:999px;background:#cbd5e1;} .dot.on{background:#3b82f6;}
  .num{font-size:48px;font-weight:900;color:#f97316;text-align:center;}
  .bar{height:8px;background:#e2e8f0;border-radius:999px;overflow:hidden;} .bar i{display:block;height:100%;background:linear-gradient(90deg,#f97316,#3b82f6);}
  .ads{display:grid;grid-template-columns:repeat(auto-fill,minmax(220px,1fr));gap:14px;}
  .ad img{width:100%;border-radius:12px;} .ad a{color:#0f172a;text-decoration:none;font-weight:700;}
  .btn{display:inline-flex;align-items:center;justify-content:center;height:48px;padding:0 22px;border:none;border-radius:14px;background:#3b82f6;color:#fff;font-weight:800;font-size:16px;cursor:pointer;}
  input{width:100%;padding:10px 12px;border-radius:12px;border:1px solid #cbd5e1;margin-bottom:10px;}
  table{width:100%;border-collapse:collapse;font-size:14px;} td,th{padding:6px 8px;border-bottom:1px solid #e2e8f0;text-align:left;}
  .err{color:#dc2626;font-weight:700;} .muted{color:#64748b;font-size:13px;}
</style>"""


def _page(title: str, body: str, head_extra: str = "") -> str:
    return f"""<!DOCTYPE html>
<html lang="en"><head>
<meta charset="utf-8"><meta name="viewport" content="width=device-width,initial-scale=1.0">
<title>{html.escape(title)}</title>
{head_extra}
{_STYLE}
</head><body><div class="wrap">
{body}
</div></body></html>"""


def render_ad_page(page: PageConfig, remaining: int) -> str:
    step = page.id
    dots = "".join(f'<span class="dot{" on" if s <= step else ""}"></span>' for s in range(1, FUNNEL_PAGES + 1))
    ads_html = ""
    if page.ads:
        cards = "".join(
            f"""<div class="card ad"><a href="/ad/{step}/click/{html.escape(ad.id)}" target="_blank" rel="noopener noreferrer">
<img src="{html.escape(ad.image_url)}" alt="{html.escape(ad.title)}"/><div>{html.escape(ad.title)}</div></a></div>"""
            for ad in page.ads
        )
        ads_html = f'<h3 style="text-align:center">Featured Offers</h3><div class="ads">{cards}</div>'
    label = "Continue to Next Step" if step < FUNNEL_PAGES else "Get Your Download"
    progress = (page.countdown - remaining) / page.countdown * 100 if page.countdown else 100
    body = f"""<div class="card" style="display:flex;justify-content:space-between;align-items:center">
  <strong>Software Download</strong>
  <div class="steps"><span>Step {step} of {FUNNEL_PAGES}</span>{dots}</div>
</div>
<div class="card" style="text-align:center">
  <h2>Preparing Your Download</h2>
  <p class="muted">Your download will be ready in a moment. While you wait, check out these premium offers from our partners.</p>
  <div>Please Wait</div>
  <div class="num" id="left">{int(remaining)}</div>
  <div class="muted">seconds remaining</div>
  <div class="bar"><i id="bar" style="width:{progress:.0f}%"></i></div>
</div>
{ads_html}
<div style="text-align:center;margin-top:18px">
  <form id="next" method="post" action="/ad/{step}/next" style="display:{'none' if remaining > 0 else 'block'}">
    <button class="btn" type="submit">{label}</button>
  </form>
  <p id="wait" class="muted" style="display:{'block' if remaining > 0 else 'none'}">Next button will appear when countdown completes</p>
</div>
<script>
  var TOTAL = {json.dumps(int(page.countdown))};
  var left = {json.dumps(int(remaining))};
  var done = false;
  function show(){{ if(done) return; done = true; document.getElementById('next').style.display='block'; document.getElementById('wait').style.display='none'; }}
  function paint(){{ document.getElementById('left').textContent = left; document.getElementById('bar').style.width = ((TOTAL-left)/TOTAL*100)+'%'; }}
  if(left <= 0){{ show(); }} else {{
    var t = setInterval(function(){{ left = Math.max(0, left-1); paint(); if(left === 0){{ clearInterval(t); show(); }} }}, 1000);
  }}
</script>"""
    return _page(f"Step {step} of {FUNNEL_PAGES}", body)


def render_download_page(config: FunnelConfig) -> str:
    body = f"""<div class="card" style="text-align:center">
  <h1>You're All Set!</h1>
  <p class="muted">Thank you for your patience. Your download is ready.</p>
  <h2>{html.escape(config.software_name)}</h2>
  <p class="muted">Latest version &bull; Fully licensed &bull; Safe &amp; secure</p>
  <form method="post" action="/download"><button class="btn" type="submit">Download Now</button></form>
  <p class="muted">By downloading, you agree to our Terms of Service and Privacy Policy</p>
</div>"""
    return _page("Download", body)


def render_login(action: str, title: str, signup_action: str = "") -> str:
    user_field = "email" if signup_action else "username"
    signup = ""
    if signup_action:
        signup = """<div class="card"><h3>Create an account</h3>
  <input id="su_email" type="email" placeholder="Email"/>
  <input id="su_username" placeholder="Username (optional)"/>
  <input id="su_password" type="password" placeholder="Password"/>
  <button class="btn" onclick="doSignup()">Sign Up</button>
  <p id="su_msg" class="muted"></p>
</div>"""
    body = f"""<div class="card"><h2>{html.escape(title)}</h2><p id="err" class="err"></p>
  <input id="user" placeholder="{user_field.capitalize()}"/>
  <input id="pass" type="password" placeholder="Password"/>
  <button class="btn" onclick="doLogin()">Sign In</button>
</div>{signup}
<script>
  var ACTION = {json.dumps(action)};
  var SIGNUP = {json.dumps(signup_action)};
  var FIELD = {json.dumps(user_field)};
  async function post(url, body){{
    var r = await fetch(url, {{method:'POST', headers:{{'Content-Type':'application/json'}}, body: JSON.stringify(body)}});
    var d = {{}};
    try {{ d = await r.json(); }} catch(e) {{}}
    return [r.ok, d];
  }}
  async function doLogin(){{
    var body = {{password: document.getElementById('pass').value}};
    body[FIELD] = document.getElementById('user').value.trim();
    var res = await post(ACTION, body);
    if(res[0]){{ location.href = res[1].redirect || '/'; return; }}
    document.getElementById('err').textContent = res[1].error || 'Login failed';
  }}
  async function doSignup(){{
    var res = await post(SIGNUP, {{
      email: document.getElementById('su_email').value.trim(),
      username: document.getElementById('su_username').value.trim(),
      password: document.getElementById('su_password').value
    }});
    document.getElementById('su_msg').textContent = res[0] ? 'Account created, you can sign in now' : (res[1].error || 'Sign up failed');
  }}
</script>"""
    return _page(title, body)


def render_loading(retry_url: str) -> str:
    body = """<div class="card" style="text-align:center"><h2>Loading...</h2><p class="muted">Checking your session</p></div>"""
    return _page("Loading", body, head_extra=f'<meta http-equiv="refresh" content="1;url={html.escape(retry_url)}">')


def render_message(title: str, message: str, link: str = "/", link_text: str = "Go home") -> str:
    body = f"""<div class="card" style="text-align:center"><h2>{html.escape(title)}</h2>
<p class="muted">{html.escape(message)}</p><a href="{html.escape(link)}">{html.escape(link_text)}</a></div>"""
    return _page(title, body)


def _rows(items: List[Dict[str, Any]], cols: List[str]) -> str:
    head = "".join(f"<th>{html.escape(c)}</th>" for c in cols)
    body = "".join("<tr>" + "".join(f"<td>{html.escape(str(it.get(c, '')))}</td>" for c in cols) + "</tr>" for it in items)
    return f"<table><tr>{head}</tr>{body}</table>"


def _action_rows(items: List[Dict[str, Any]], cols: List[str], action: str, key: str) -> str:
    head = "".join(f"<th>{html.escape(c)}</th>" for c in cols) + "<th></th>"
    body = "".join(
        "<tr>"
        + "".join(f"<td>{html.escape(str(it.get(c, '')))}</td>" for c in cols)
        + f"<td><button onclick='act({html.escape(json.dumps(action))}, {{id: {html.escape(json.dumps(it.get(key)))}}})'>Delete</button></td></tr>"
        for it in items
    )
    return f"<table><tr>{head}</tr>{body}</table>"


def render_console(title: str, username: str, summary: Dict[str, Any], config: FunnelConfig, links: List[Dict[str, Any]]) -> str:
    ads = [
        {"id": a.id, "title": a.title, "page": a.assigned_page, "link": a.link_url}
        for p in config.pages
        for a in p.ads
    ]
    page_opts = "".join(f'<option value="{p.id}">Page {p.id}</option>' for p in config.pages)
    countdown_inputs = "".join(
        f'<label>Page {p.id} <input class="cd" data-page="{p.id}" type="number" min="1" value="{p.countdown}"/></label>'
        for p in config.pages
    )
    body = f"""<div class="card" style="display:flex;justify-content:space-between;align-items:center">
  <strong>{html.escape(title)}</strong><span class="muted">{html.escape(username)}</span>
  <form method="post" action="/logout"><button class="btn" type="submit">Logout</button></form>
</div>
<p id="msg" class="err"></p>
<div class="card"><h3>Analytics</h3>
  <p>Total page visits: <b>{summary['totalVisits']}</b> &middot; Total ad clicks: <b>{summary['totalClicks']}</b>
  &middot; Downloads: <b>{summary['totalDownloads']}</b> &middot; Conversion: <b>{summary['conversionRate']}%</b></p>
  {_rows(summary['pageVisits'], ['name', 'visits'])}
  {_rows(summary['adClicks'], ['ad', 'title', 'clicks'])}
</div>
<div class="card"><h3>Settings</h3>
  {countdown_inputs}
  <input id="sw_name" value="{html.escape(config.software_name)}" placeholder="Software name"/>
  <input id="sw_url" value="{html.escape(config.download_url)}" placeholder="Download URL"/>
  <button class="btn" onclick="saveSettings()">Save Settings</button>
</div>
<div class="card"><h3>Advertisements</h3>{_action_rows(ads, ['id', 'title', 'page', 'link'], '/api/admin/ad/delete', 'id')}
  <input id="ad_title" placeholder="Title"/><input id="ad_img" placeholder="Image URL"/><input id="ad_link" placeholder="Link URL"/>
  <select id="ad_page">{page_opts}</select>
  <button class="btn" onclick="addAd()">Add Ad</button>
</div>
<div class="card"><h3>Short Links</h3>{_action_rows(links, ['short_code', 'original_url', 'click_count', 'created_at'], '/api/admin/link/delete', 'id')}
  <input id="link_url" placeholder="https://..."/><input id="link_code" placeholder="Custom code (optional)"/>
  <button class="btn" onclick="act('/api/admin/link/add', {{url: val('link_url'), short_code: val('link_code') || null}})">Shorten</button>
</div>
<div class="card"><h3>Configuration</h3>
  <a href="/api/admin/config/export">Export JSON</a>
  <textarea id="import_text" rows="6" style="width:100%"></textarea>
  <button class="btn" onclick="act('/api/admin/config/import', {{text: val('import_text')}})">Import</button>
  <button class="btn" onclick="if(confirm('Reset configuration and analytics?')) act('/api/admin/config/reset', {{}})">Reset</button>
</div>
<script>
  function val(id){{ return document.getElementById(id).value.trim(); }}
  async function act(url, body){{
    var r = await fetch(url, {{method:'POST', headers:{{'Content-Type':'application/json'}}, body: JSON.stringify(body)}});
    if(r.ok){{ location.reload(); return; }}
    var d = {{}};
    try {{ d = await r.json(); }} catch(e) {{}}
    document.getElementById('msg').textContent = d.error || ('Request failed (' + r.status + ')');
  }}
  function saveSettings(){{
    var countdowns = {{}};
    document.querySelectorAll('.cd').forEach(function(el){{ countdowns[el.dataset.page] = parseInt(el.value, 10); }});
    act('/api/admin/settings', {{countdowns: countdowns, software_name: val('sw_name'), download_url: val('sw_url')}});
  }}
  function addAd(){{
    act('/api/admin/ad/add', {{title: val('ad_title'), image_url: val('ad_img'), link_url: val('ad_link'), assigned_page: parseInt(val('ad_page'), 10)}});
  }}
</script>"""
    return _page(title, body)


def render_user_dashboard(user: Dict[str, Any], role: str, data: Dict[str, Any]) -> str:
    analytics = data.get("analytics") or {}
    links = [l for l in data.get("short_links") or [] if isinstance(l, dict)]
    ads = [a for a in data.get("ads") or [] if isinstance(a, dict)]
    body = f"""<div class="card" style="display:flex;justify-content:space-between;align-items:center">
  <strong>My Dashboard</strong><span class="muted">{html.escape(str(user.get('username') or ''))} ({html.escape(role)})</span>
  <form method="post" action="/user/logout"><button class="btn" type="submit">Logout</button></form>
</div>
<div class="card"><h3>Analytics</h3><p>Clicks: <b>{int(analytics.get('totalClicks') or 0)}</b> &middot;
  Views: <b>{int(analytics.get('totalViews') or 0)}</b> &middot; Countdown: <b>{int(data.get('countdown') or 0)}s</b></p></div>
<div class="card"><h3>My Ads</h3>{_rows(ads, ['id', 'title', 'targetUrl', 'isActive'])}</div>
<div class="card"><h3>My Short Links</h3>{_rows(links, ['shortCode', 'originalUrl', 'clickCount', 'createdAt'])}</div>"""
    return _page("My Dashboard", body)
