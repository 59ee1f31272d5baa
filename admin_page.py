"""
Admin settings screen: two text settings, a save button and a collapsible
documentation sidebar. The page is a static shell; it reads and writes the
settings through the settings API with the bearer token kept in localStorage.
"""
from jinja2 import DictLoader, Environment, select_autoescape

FAQ = [
    {
        "question": "How do I show reviews on a page?",
        "answer": "Embed /embed/product-reviews in the page. It lists five published reviews per page "
                  "and pages through the rest with ?paged=N.",
        "open": True,
    },
    {
        "question": "How do I search reviews?",
        "answer": "Call /api/reviews with q, categories, tags, rating (4.5 or 3-5), page_no and posts_per_page.",
        "open": False,
    },
]

SETTINGS_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{{ title }}</title>
<style>
body { font-family: sans-serif; margin: 0; background: #f0f0f1; }
header { position: sticky; top: 0; background: #fff; padding: 12px 24px; border-bottom: 1px solid #dcdcde; }
.prm-wrap { display: flex; gap: 24px; padding: 24px; }
.prm-content { flex: 7; background: #fff; padding: 24px; }
.prm-docs { flex: 5; background: #fff; padding: 24px; }
.prm-docs.hidden { display: none; }
.prm-row { margin-bottom: 16px; }
.prm-row label { display: block; font-weight: 600; margin-bottom: 4px; }
.prm-row input { width: 100%; padding: 6px; }
#prm-notice { margin-left: 12px; }
</style>
</head>
<body>
<div id="{{ root_id }}">
  <header>
    <strong>{{ title }}</strong>
    <button type="button" id="prm-save">Save Settings</button>
    <button type="button" id="prm-toggle-docs">Documentation</button>
    <span id="prm-notice" role="status"></span>
  </header>
  <div class="prm-wrap">
    <section class="prm-content">
      <h2>Settings</h2>
      <form id="prm-login" hidden>
        <div class="prm-row"><label for="prm-email">Email</label><input id="prm-email" type="email"></div>
        <div class="prm-row"><label for="prm-password">Password</label><input id="prm-password" type="password"></div>
        <button type="submit">Log in</button>
      </form>
      <form id="prm-settings">
        {%- for field in fields %}
        <div class="prm-row">
          <label for="{{ field.name }}">{{ field.label }}</label>
          <input id="{{ field.name }}" name="{{ field.name }}" type="text" placeholder="{{ field.placeholder }}">
        </div>
        {%- endfor %}
      </form>
    </section>
    <aside class="prm-docs" id="prm-docs">
      <h2>Documentation</h2>
      {%- for item in faq %}
      <details{% if item.open %} open{% endif %}>
        <summary>{{ item.question }}</summary>
        <p>{{ item.answer }}</p>
      </details>
      {%- endfor %}
    </aside>
  </div>
</div>
<script>
(function () {
  const settingsUrl = {{ settings_url | tojson }};
  const loginUrl = {{ login_url | tojson }};
  const fields = {{ field_names | tojson }};
  const tokenKey = "prm_token";
  const docsKey = "prm_docs_hidden";
  const notice = document.getElementById("prm-notice");
  const docs = document.getElementById("prm-docs");

  function headers() {
    return {"Content-Type": "application/json", "Authorization": "Bearer " + localStorage.getItem(tokenKey)};
  }

  function showLogin(message) {
    document.getElementById("prm-login").hidden = false;
    notice.textContent = message;
  }

  function fill(settings) {
    fields.forEach(function (name) { document.getElementById(name).value = settings[name] || ""; });
  }

  function load() {
    if (!localStorage.getItem(tokenKey)) { showLogin("Log in to manage settings."); return; }
    fetch(settingsUrl, {headers: headers()}).then(function (res) {
      if (res.status === 401 || res.status === 403) { showLogin("You do not have permission to access this resource."); return null; }
      return res.json();
    }).then(function (data) { if (data) { fill(data); } });
  }

  document.getElementById("prm-login").addEventListener("submit", function (event) {
    event.preventDefault();
    fetch(loginUrl, {
      method: "POST",
      headers: {"Content-Type": "application/json"},
      body: JSON.stringify({
        email: document.getElementById("prm-email").value,
        password: document.getElementById("prm-password").value
      })
    }).then(function (res) { return res.json(); }).then(function (data) {
      if (data.access_token) {
        localStorage.setItem(tokenKey, data.access_token);
        document.getElementById("prm-login").hidden = true;
        notice.textContent = "";
        load();
      } else {
        notice.textContent = "Invalid credentials";
      }
    });
  });

  document.getElementById("prm-save").addEventListener("click", function () {
    const body = {};
    fields.forEach(function (name) { body[name] = document.getElementById(name).value; });
    notice.textContent = "Saving...";
    fetch(settingsUrl, {method: "PUT", headers: headers(), body: JSON.stringify(body)})
      .then(function (res) { return res.json().then(function (data) { return [res.ok, data]; }); })
      .then(function (result) {
        if (result[0]) { fill(result[1]); notice.textContent = "Settings saved."; }
        else { notice.textContent = (result[1].detail && result[1].detail.message) || "Save failed."; }
      });
  });

  function applyDocs() { docs.classList.toggle("hidden", localStorage.getItem(docsKey) === "1"); }
  document.getElementById("prm-toggle-docs").addEventListener("click", function () {
    localStorage.setItem(docsKey, localStorage.getItem(docsKey) === "1" ? "0" : "1");
    applyDocs();
  });

  applyDocs();
  load();
})();
</script>
</body>
</html>
"""

SETTINGS_FIELDS = [
    {"name": "setting1", "label": "Setting 1", "placeholder": "Enter Text"},
    {"name": "setting2", "label": "Setting 2", "placeholder": "Enter Another Text"},
]

env = Environment(
    loader=DictLoader({"settings.html": SETTINGS_TEMPLATE}),
    autoescape=select_autoescape(["html"]),
)


def render_settings_page(settings_url: str, login_url: str) -> str:
    return env.get_template("settings.html").render(
        title="Product Review Manager",
        root_id="product-review-manager",
        fields=SETTINGS_FIELDS,
        field_names=[f["name"] for f in SETTINGS_FIELDS],
        faq=FAQ,
        settings_url=settings_url,
        login_url=login_url,
    )
