from fastapi import APIRouter
from fastapi.responses import HTMLResponse


router = APIRouter()


@router.get("/upload", response_class=HTMLResponse)
def upload_form() -> str:
    # 简易测试页：上传到 /images，再对返回的图片 id 调用 /images/{id}/transform
    return """
<!DOCTYPE html>
<html lang=\"zh-CN\">
<head>
  <meta charset=\"UTF-8\" />
  <meta name=\"viewport\" content=\"width=device-width, initial-scale=1.0\" />
  <title>图片上传与变换测试</title>
  <style>
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, 'Noto Sans', 'PingFang SC', 'Hiragino Sans GB', 'Microsoft YaHei', sans-serif; padding: 24px; }
    .card { max-width: 720px; margin: 0 auto 16px; border: 1px solid #ddd; border-radius: 8px; padding: 20px; }
    label { display: block; margin-top: 12px; font-weight: 600; }
    input, textarea { width: 100%; padding: 8px; margin-top: 6px; }
    textarea { font-family: monospace; min-height: 160px; }
    button { margin-top: 16px; padding: 10px 16px; font-weight: 600; }
    pre { background: #f7f7f7; padding: 12px; white-space: pre-wrap; word-break: break-all; }
  </style>
  <script>
    function userHeaders(extra) {
      return Object.assign({ 'X-User-Id': document.getElementById('userId').value }, extra || {});
    }
    async function show(resp) {
      const text = await resp.text();
      try {
        const json = JSON.parse(text);
        document.getElementById('result').textContent = JSON.stringify(json, null, 2);
        if (json.id) {
          document.getElementById('imageId').value = json.id;
        }
        if (json.url) {
          const img = document.getElementById('preview');
          img.src = json.url + (json.url.includes('?') ? '&' : '?') + '_=' + Date.now();
          img.style.display = 'block';
        }
      } catch (err) {
        document.getElementById('result').textContent = text;
      }
    }
    async function handleUpload(e) {
      e.preventDefault();
      const fd = new FormData(document.getElementById('uploadForm'));
      await show(await fetch('/images', { method: 'POST', body: fd, headers: userHeaders() }));
    }
    async function handleTransform(e) {
      e.preventDefault();
      const id = document.getElementById('imageId').value;
      const body = document.getElementById('transformations').value;
      await show(await fetch('/images/' + id + '/transform', {
        method: 'POST',
        body: body,
        headers: userHeaders({ 'Content-Type': 'application/json' }),
      }));
    }
  </script>
  </head>
  <body>
    <div class=\"card\">
      <label>用户 ID（X-User-Id）</label>
      <input type=\"number\" id=\"userId\" min=\"1\" value=\"1\" />
    </div>
    <div class=\"card\">
      <h2>上传</h2>
      <form id=\"uploadForm\" onsubmit=\"handleUpload(event)\">
        <label>文件（jpeg/png/webp/tiff）</label>
        <input type=\"file\" name=\"image\" required />
        <button type=\"submit\">上传</button>
      </form>
    </div>
    <div class=\"card\">
      <h2>变换</h2>
      <form onsubmit=\"handleTransform(event)\">
        <label>图片 ID</label>
        <input type=\"number\" id=\"imageId\" min=\"1\" required />
        <label>变换参数</label>
        <textarea id=\"transformations\">{
  \"transformations\": {
    \"rotate\": 90,
    \"format\": \"webp\",
    \"filters\": {\"grayscale\": true}
  }
}</textarea>
        <button type=\"submit\">变换</button>
      </form>
    </div>
    <div class=\"card\">
      <h3>响应</h3>
      <pre id=\"result\"></pre>
      <img id=\"preview\" alt=\"预览\" style=\"display:none; max-width: 100%; margin-top: 12px; border:1px solid #eee;\" />
    </div>
  </body>
</html>
    """
