from __future__ import annotations

import html
import tempfile

from genesis import APP_NAME
from genesis.errors import BusyError, GenerationError, MissingCredential
from genesis.markdown import render
from genesis.service import ChatService, describe_error
from genesis.sessions.schema import Role, Session

try:
    import gradio as gr
except ImportError:
    gr = None


def _check_gradio() -> None:
    if gr is None:
        raise ImportError("Gradio not installed. Run: pip install 'genesis-chat[gui]'")


def render_transcript(session: Session) -> str:
    if not session.messages:
        return '<div class="empty">Start the conversation below.</div>'
    blocks = []
    for message in session.messages:
        is_user = message.role == Role.USER
        who = "You" if is_user else APP_NAME
        body = f"<p>{html.escape(message.text)}</p>" if is_user else render(message.text)
        blocks.append(
            f'<div class="message {message.role.value}">'
            f'<div class="role">{who}</div><div class="text">{body}</div></div>'
        )
    return "\n".join(blocks)


def _session_choices(service: ChatService) -> list[tuple[str, str]]:
    return [(s.title, s.id) for s in service.sessions.load_all()]


def _refresh(service: ChatService, session: Session, status: str = ""):
    return (
        gr.update(choices=_session_choices(service), value=session.id),
        render_transcript(session),
        status,
    )


def create_app(service: ChatService) -> "gr.Blocks":
    _check_gradio()
    settings = service.settings.load()

    def on_start():
        return _refresh(service, service.start())

    def on_send(text: str, session_id: str):
        if not (text or "").strip():
            session = service.sessions.get_by_id(session_id) or service.start()
            return (*_refresh(service, session), text)
        outcome = service.send(text, session_id=session_id or None)
        session = outcome.session or service.active_session()
        if not outcome.ok:
            # keep the draft when the message was not recorded
            keep = text if isinstance(outcome.error, (MissingCredential, BusyError)) else ""
            return (*_refresh(service, session, describe_error(outcome.error)), keep)
        status = f"Replied in {outcome.elapsed_ms} ms" if outcome.elapsed_ms is not None else ""
        return (*_refresh(service, session, status), "")

    def on_select(session_id: str):
        session = service.switch(session_id) or service.active_session()
        return _refresh(service, session)

    def on_new():
        return _refresh(service, service.new_session())

    def on_delete(session_id: str):
        return _refresh(service, service.delete(session_id), "Session deleted")

    def on_clear():
        return _refresh(service, service.clear_all(), "All sessions deleted")

    def on_rename(session_id: str, title: str):
        session = service.rename(session_id, title) or service.active_session()
        return _refresh(service, session)

    def on_export(session_id: str):
        path = service.export_to(session_id, tempfile.mkdtemp(prefix="genesis-"))
        return str(path) if path else None

    def on_save_settings(api_key: str, temperature: float, max_tokens: int):
        saved = service.save_settings(
            api_key=api_key, temperature=temperature, max_tokens=max_tokens
        )
        return f"Settings saved (key {saved.masked_key()})"

    def on_test_key(api_key: str):
        try:
            result = service.test_key(api_key or None)
        except GenerationError as e:
            return f"Key check failed: {describe_error(e)}"
        return f"Key OK ({result.elapsed_ms} ms)"

    with gr.Blocks(title=APP_NAME) as app:
        gr.Markdown(f"# {APP_NAME}")

        with gr.Tabs():
            with gr.Tab("Chat"):
                with gr.Row():
                    with gr.Column(scale=1):
                        session_dropdown = gr.Dropdown(label="Session", choices=[])
                        title_box = gr.Textbox(label="Rename", placeholder="New title")
                        rename_btn = gr.Button("Rename")
                        new_btn = gr.Button("New session", variant="primary")
                        delete_btn = gr.Button("Delete session")
                        clear_btn = gr.Button("Delete all", variant="stop")
                        export_btn = gr.Button("Export JSON")
                        export_file = gr.File(label="Export", interactive=False)
                    with gr.Column(scale=3):
                        transcript = gr.HTML()
                        status = gr.Markdown()
                        composer = gr.Textbox(
                            label="Message", placeholder="Ask anything...", lines=3
                        )
                        send_btn = gr.Button("Send", variant="primary")

            with gr.Tab("Settings"):
                key_box = gr.Textbox(
                    label="Google API key", type="password", value=settings.api_key
                )
                temperature = gr.Slider(
                    minimum=0.0, maximum=1.0, step=0.05,
                    value=settings.temperature, label="Temperature",
                )
                max_tokens = gr.Slider(
                    minimum=64, maximum=2048, step=32,
                    value=settings.max_tokens, label="Max tokens",
                )
                with gr.Row():
                    save_btn = gr.Button("Save", variant="primary")
                    test_btn = gr.Button("Test key")
                settings_status = gr.Markdown()

        view = [session_dropdown, transcript, status]
        app.load(fn=on_start, outputs=view)
        send_btn.click(fn=on_send, inputs=[composer, session_dropdown], outputs=[*view, composer])
        composer.submit(fn=on_send, inputs=[composer, session_dropdown], outputs=[*view, composer])
        session_dropdown.input(fn=on_select, inputs=session_dropdown, outputs=view)
        new_btn.click(fn=on_new, outputs=view)
        delete_btn.click(fn=on_delete, inputs=session_dropdown, outputs=view)
        clear_btn.click(fn=on_clear, outputs=view)
        rename_btn.click(fn=on_rename, inputs=[session_dropdown, title_box], outputs=view)
        export_btn.click(fn=on_export, inputs=session_dropdown, outputs=export_file)
        save_btn.click(
            fn=on_save_settings, inputs=[key_box, temperature, max_tokens], outputs=settings_status
        )
        test_btn.click(fn=on_test_key, inputs=key_box, outputs=settings_status)

    return app


def launch(service: ChatService, **kwargs) -> None:
    app = create_app(service)
    app.launch(**kwargs)
