"""
Diabetic Retinopathy Detection - Streamlit Application
Upload a retinal fundus image and classify diabetic retinopathy severity with Gemini.
"""
import asyncio
import logging
from datetime import datetime

import streamlit as st
from PIL import Image

from drscan.config import DARK_MODE_KEY, Settings, configure_logging
from drscan.classifier import RetinopathyClassifier
from drscan.history import HistoryCache
from drscan.image_handler import ImagePreprocessor, ImageUploadHandler, decode_data_url_image
from drscan.lifecycle import AnalysisSession, AnalysisState
from drscan.models import DR_DESCRIPTIONS, DR_LEVELS, ImageFilters
from drscan.report import ReportExporter
from drscan.storage import JsonFileStore

logger = logging.getLogger(__name__)

# Configure Streamlit page
st.set_page_config(
    page_title="Diabetic Retinopathy Detection",
    page_icon="👁️",
    layout="wide",
    initial_sidebar_state="expanded"
)

DARK_CSS = """
<style>
    .stApp { background-color: #111827; color: #e5e7eb; }
    section[data-testid="stSidebar"] { background-color: #1f2937; }
</style>
"""


@st.cache_resource(show_spinner=False)
def _get_settings() -> Settings:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    logger.info("Using data directory %s", settings.data_dir)
    return settings


@st.cache_resource(show_spinner=False)
def _get_store() -> JsonFileStore:
    """One store per Streamlit process, shared by all browser sessions."""
    return JsonFileStore(_get_settings().store_path)


@st.cache_resource(show_spinner=False)
def _get_classifier() -> RetinopathyClassifier:
    return RetinopathyClassifier.from_settings(_get_settings())


def _init_session_state() -> AnalysisSession:
    """Initialize keys stored in st.session_state."""
    if "analysis" not in st.session_state:
        history = HistoryCache(_get_store())
        st.session_state.analysis = AnalysisSession(_get_classifier(), history)
    if "uploader_key" not in st.session_state:
        st.session_state.uploader_key = 0
    if "last_upload_id" not in st.session_state:
        st.session_state.last_upload_id = None
    if "pending_export" not in st.session_state:
        st.session_state.pending_export = None
    return st.session_state.analysis


def _upload_id(uploaded_file) -> str:
    return getattr(uploaded_file, "file_id", None) or f"{uploaded_file.name}:{uploaded_file.size}"


def _reset_analysis(session: AnalysisSession) -> None:
    session.reset()
    st.session_state.uploader_key += 1
    st.session_state.last_upload_id = None
    st.session_state.pending_export = None


def _prepare_export(result) -> None:
    exported = ReportExporter().export(result)
    if exported is None:
        st.toast("Could not create the PDF report.")
    st.session_state.pending_export = exported


def _render_sidebar(session: AnalysisSession) -> None:
    """Render the theme toggle and the analysis history."""
    store = _get_store()
    with st.sidebar:
        st.header("🎛️ Control Panel")

        dark_mode = st.toggle("Dark mode", value=bool(store.get(DARK_MODE_KEY, True)))
        if dark_mode != store.get(DARK_MODE_KEY, True):
            store.set(DARK_MODE_KEY, dark_mode)
        if dark_mode:
            st.markdown(DARK_CSS, unsafe_allow_html=True)

        st.divider()
        st.header("🕘 History")
        entries = session.history.list()
        if not entries:
            st.caption("No analysis history yet")
            return

        for entry in entries:
            analysed_at = datetime.fromtimestamp(entry.timestamp / 1000.0)
            with st.container(border=True):
                st.markdown(f"**{entry.label}**")
                st.caption(analysed_at.strftime("%Y-%m-%d %H:%M"))
                col_view, col_export, col_delete = st.columns(3)
                with col_view:
                    if st.button("View", key=f"view-{entry.id}"):
                        session.select_from_history(entry.id)
                        st.session_state.pending_export = None
                        st.rerun()
                with col_export:
                    if st.button("PDF", key=f"export-{entry.id}"):
                        _prepare_export(entry)
                with col_delete:
                    if st.button("Delete", key=f"delete-{entry.id}"):
                        session.delete_from_history(entry.id)
                        st.rerun()


def _render_image_panel(session: AnalysisSession) -> None:
    """Show the current image with the display filters applied."""
    image = None
    if session.preview_path is not None:
        with Image.open(session.preview_path) as opened:
            image = opened.copy()
    elif session.current_result is not None:
        try:
            image = decode_data_url_image(session.current_result.image_url)
        except Exception as exc:
            logger.warning("Could not decode stored image: %s", exc)
            st.warning("The stored image could not be displayed.")
    if image is None:
        return

    with st.expander("🎚️ Image adjustments"):
        filters = session.filters
        filters.brightness = st.slider("Brightness", ImageFilters.MIN_VALUE, ImageFilters.MAX_VALUE,
                                       filters.brightness, format="%d%%")
        filters.contrast = st.slider("Contrast", ImageFilters.MIN_VALUE, ImageFilters.MAX_VALUE,
                                     filters.contrast, format="%d%%")
        filters.saturation = st.slider("Saturation", ImageFilters.MIN_VALUE, ImageFilters.MAX_VALUE,
                                       filters.saturation, format="%d%%")

    image_array = ImagePreprocessor.to_rgb_array(image)
    st.image(ImagePreprocessor.apply_filters(image_array, session.filters),
             caption="Uploaded retinal scan", width="stretch")

    with st.expander("🔍 Full size image"):
        st.image(image_array, caption="Original resolution, no adjustments", width="content")

    if st.button("✖ Remove image"):
        _reset_analysis(session)
        st.rerun()


def _render_result(session: AnalysisSession) -> None:
    result = session.current_result
    st.subheader(f"📊 {result.label}")
    st.write(result.description)

    scale = st.columns(len(DR_LEVELS))
    for column, (level, label) in zip(scale, DR_LEVELS.items()):
        with column:
            if level == result.level:
                st.markdown(f"**:blue-background[{label}]**")
            else:
                st.caption(label)

    if st.button("📄 Export to PDF"):
        _prepare_export(result)


def _render_pending_export() -> None:
    exported = st.session_state.pending_export
    if not exported:
        return
    filename, content = exported
    st.download_button(
        label="📥 Download PDF report",
        data=content,
        file_name=filename,
        mime="application/pdf",
    )


def main():
    """Main application entry point."""
    _get_settings()
    session = _init_session_state()

    st.title("👁️ Diabetic Retinopathy Detection")
    st.markdown("Upload a retinal image for instant AI-powered analysis of diabetic retinopathy severity.")

    _render_sidebar(session)

    col1, col2 = st.columns(2)

    with col1:
        st.subheader("📤 Image Upload")
        uploaded_file = st.file_uploader(
            "Drag & drop your retinal image here",
            type=ImageUploadHandler.SUPPORTED_EXTENSIONS,
            accept_multiple_files=False,
            key=f"uploader-{st.session_state.uploader_key}",
            help="Supported formats: JPEG, PNG (max 4MB)"
        )

        if uploaded_file is not None and _upload_id(uploaded_file) != st.session_state.last_upload_id:
            st.session_state.last_upload_id = _upload_id(uploaded_file)
            st.session_state.pending_export = None
            with st.spinner("🔄 Analyzing image..."):
                asyncio.run(session.analyze(uploaded_file))
            st.rerun()

        _render_image_panel(session)

    with col2:
        st.subheader("🔍 Analysis Result")
        if session.state is AnalysisState.ERROR:
            st.error(f"❌ {session.error_message}")
        elif session.state is AnalysisState.SUCCESS and session.current_result is not None:
            _render_result(session)
        else:
            st.info("👆 Upload a retinal image to start the analysis")

        _render_pending_export()

    st.divider()
    with st.expander("📖 Understanding Diabetic Retinopathy"):
        st.write(
            "Diabetic retinopathy is a diabetes complication that affects the eyes. It occurs when "
            "high blood sugar levels damage blood vessels in the retina, the light-sensitive tissue "
            "at the back of the eye."
        )
        for level, stage in DR_LEVELS.items():
            st.markdown(f"**{level}: {stage}**  \n{DR_DESCRIPTIONS[level]}")


if __name__ == "__main__":
    main()
