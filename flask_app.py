"""
Flask application for Lamplight Students.
Student records, CSV imports with name-mismatch review, and the sign-in
allowlist, backed by Supabase Auth + Postgres.
"""

from flask import Flask, render_template, request, redirect, url_for, session, flash, jsonify, send_file
from werkzeug.utils import secure_filename
import os
import io
from typing import Any, Dict, Optional
import logging

from dotenv import load_dotenv
from pydantic import ValidationError

# Load environment variables from .env file (for local development)
load_dotenv()

from auth.supabase_client import get_supabase_client, get_service_role_client
from auth.allowlist import (
    AllowlistError,
    add_allowed_email,
    is_email_allowed,
    list_allowed_emails,
    remove_allowed_email,
    require_admin,
    update_allowed_email_role,
)
from roster.csv_mapper import CSVParseError
from roster.error_report import (
    error_csv_filename,
    errors_to_clipboard_text,
    errors_to_csv,
    filter_errors,
    group_errors_by_type,
)
from roster.export import export_filename, students_to_csv
from roster.field_mapping import validate_column_mappings
from roster.listing import LIST_FIELDS, build_student_page, filter_students, sort_students
from roster.runner import (
    ImportNotFound,
    cancel_import,
    dismiss_import_report,
    get_import_report,
    outcome_payload,
    resume_import,
    start_import,
)
from roster.schema import (
    COURSE_PLACEMENTS,
    ENROLLMENT_STATUSES,
    ESOL_PLACEMENTS,
    GENDERS,
    NameMismatchDecision,
    Program,
    Role,
    StudentForm,
    US_STATES,
)
from roster.supabase_db import (
    StoreError,
    get_profile,
    get_student_by_id,
    init_database,
    insert_students,
    list_students,
    update_profile,
    update_student,
)
from roster.writer import get_changed_fields

app = Flask(__name__)
app.secret_key = os.environ.get("FLASK_SECRET_KEY", os.urandom(32))
app.logger.setLevel(logging.INFO)

# Configuration
ALLOWED_EXTENSIONS = {"csv"}
MAX_IMPORT_FILE_MB = int(os.environ.get("MAX_IMPORT_FILE_MB", "5"))
app.config["MAX_CONTENT_LENGTH"] = MAX_IMPORT_FILE_MB * 1024 * 1024

# Paths that skip the allowlist check
PUBLIC_PREFIXES = ("/auth/", "/api/", "/static/")
PUBLIC_PATHS = {"/login", "/logout"}

PROFILE_FIELDS = ("display_name", "phone", "biography")

# Mapping tables are constants; a bad target column is a deploy error
validate_column_mappings()

# Verify Supabase on startup (warning only)
init_database(get_supabase_client())


def allowed_file(filename):
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def require_auth():
    """Check if user is authenticated."""
    if "user_id" not in session or not session.get("user_id"):
        return False
    return True


def current_client():
    """Supabase client acting as the signed-in user (RLS applies)."""
    return get_supabase_client(session.get("supabase_access_token"))


def api_error(message: str, status: int):
    return jsonify({"error": message}), status


def require_admin_api():
    """
    (client, admin profile) for the signed-in admin.

    Raises:
        AllowlistError: 401 / 403 / 500 for the JSON error response.
    """
    if not require_auth():
        raise AllowlistError("Unauthorized", 401)
    client = current_client()
    if client is None:
        raise AllowlistError("Supabase is not configured", 500)
    return client, require_admin(client, session.get("user_id"))


def is_admin(client) -> bool:
    try:
        require_admin(client, session.get("user_id"))
        return True
    except AllowlistError:
        return False


@app.errorhandler(AllowlistError)
def handle_allowlist_error(e: AllowlistError):
    return api_error(e.message, e.status)


@app.errorhandler(ImportNotFound)
def handle_import_not_found(e: ImportNotFound):
    return api_error("Import not found", 404)


@app.errorhandler(413)
def handle_too_large(e):
    return api_error(f"File is too large (max {MAX_IMPORT_FILE_MB} MB)", 413)


@app.before_request
def enforce_allowlist():
    """Sign out users whose email is not on a non-empty allowlist."""
    path = request.path
    if path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES) or request.endpoint == "static":
        return None
    if not require_auth():
        return None

    # RLS may hide allowed_emails from non-admins; prefer the service role
    client = get_service_role_client() or current_client()
    if client is None:
        return None

    email = session.get("user_email")
    if is_email_allowed(client, email):
        return None

    app.logger.warning(f"⚠️ {email} is not on the allowlist, signing out")
    session.clear()
    return redirect(url_for("not_allowed"))


@app.route("/")
def index():
    if not require_auth():
        return redirect(url_for("login"))
    return redirect(url_for("students"))


@app.route("/login", methods=["GET", "POST"])
def login():
    """Login page with password or magic link authentication."""
    if require_auth():
        return redirect(url_for("index"))

    supabase = get_supabase_client()
    if not supabase:
        flash("Authentication is not configured. Please set SUPABASE_URL and SUPABASE_ANON_KEY.", "error")
        return render_template("login.html")

    if request.method == "POST":
        email = request.form.get("email", "").strip().lower()
        password = request.form.get("password", "").strip()
        auth_method = request.form.get("auth_method", "password")  # password or magic_link

        if not email or "@" not in email:
            flash("Please enter a valid email address.", "error")
            return render_template("login.html")

        try:
            if auth_method == "password" and password:
                response = supabase.auth.sign_in_with_password({
                    "email": email,
                    "password": password
                })

                if response.user:
                    session["user_id"] = response.user.id
                    session["user_email"] = response.user.email
                    session["supabase_access_token"] = response.session.access_token if response.session else None
                    session["supabase_refresh_token"] = response.session.refresh_token if response.session else None
                    flash(f"✅ Welcome back, {response.user.email}!", "success")
                    return redirect(url_for("index"))
                flash("Invalid email or password.", "error")
            else:
                # Magic link authentication (OTP)
                redirect_url = f"{request.scheme}://{request.host}/auth/callback"
                supabase.auth.sign_in_with_otp({
                    "email": email,
                    "options": {"email_redirect_to": redirect_url}
                })
                flash(f"✅ Login link sent! Check your email at {email}", "success")
                return render_template("login.html", email_sent=True, email=email)

        except Exception as e:
            error_msg = str(e)
            if "invalid" in error_msg.lower() or "credentials" in error_msg.lower():
                flash("Invalid email or password.", "error")
            elif "signups disabled" in error_msg.lower():
                flash("Registration is currently disabled. Please contact your administrator.", "error")
            elif "rate limit" in error_msg.lower():
                flash("Too many requests. Please wait a few minutes.", "error")
            else:
                flash(f"Authentication error: {error_msg}", "error")

    return render_template("login.html")


@app.route("/auth/callback")
def auth_callback():
    """Handle Supabase magic link callback."""
    access_token = request.args.get("access_token")
    refresh_token = request.args.get("refresh_token") or ""

    # Tokens arrive in the URL fragment; the page re-requests with them as query args
    if not access_token:
        return render_template("auth_callback.html"), 200

    try:
        supabase = get_supabase_client()
        if supabase is None:
            flash("Authentication is not configured.", "error")
            return redirect(url_for("login"))
        supabase.auth.set_session(access_token=access_token, refresh_token=refresh_token)
        user_response = supabase.auth.get_user()

        if user_response and user_response.user:
            app.logger.info(f"✅ User authenticated: {user_response.user.email}")
            session["user_id"] = user_response.user.id
            session["user_email"] = user_response.user.email
            session["supabase_access_token"] = access_token
            if refresh_token:
                session["supabase_refresh_token"] = refresh_token
            flash("✅ Login successful!", "success")
            return redirect(url_for("index"))

        flash("❌ Authentication failed: Could not retrieve user information.", "error")
        return redirect(url_for("login"))
    except Exception as e:
        app.logger.error(f"❌ Auth callback error: {e}")
        flash(f"❌ Authentication error: {e}", "error")
        return redirect(url_for("login"))


@app.route("/auth/not-allowed")
def not_allowed():
    return render_template("not_allowed.html"), 403


@app.route("/logout")
def logout():
    """Logout user."""
    session.clear()
    flash("✅ Logged out successfully!", "success")
    return redirect(url_for("login"))


# ---------------------------------------------------------------------------
# Students
# ---------------------------------------------------------------------------

def _list_args() -> Dict[str, Any]:
    try:
        page = int(request.args.get("page", "1"))
    except ValueError:
        page = 1
    return {
        "search": request.args.get("q", ""),
        "program": request.args.get("program", "all"),
        "course": request.args.get("course", "all"),
        "order": "desc" if request.args.get("order") == "desc" else "asc",
        "page": page,
    }


@app.route("/students")
def students():
    """Students list with search, filters, sort and pagination."""
    if not require_auth():
        return redirect(url_for("login"))

    client = current_client()
    if client is None:
        flash("Supabase is not configured.", "error")
        return render_template("students.html", page=None, args=_list_args(),
                               programs=[p.value for p in Program], placements=COURSE_PLACEMENTS,
                               esol_placements=ESOL_PLACEMENTS,
                               is_admin=False)

    args = _list_args()
    page = build_student_page(list_students(client, LIST_FIELDS), **args)
    return render_template("students.html",
                           page=page,
                           args=args,
                           programs=[p.value for p in Program],
                           placements=COURSE_PLACEMENTS,
                           esol_placements=ESOL_PLACEMENTS,
                           is_admin=is_admin(client))


@app.route("/students/export")
def export_students():
    """Export the filtered students list to CSV."""
    if not require_auth():
        return redirect(url_for("login"))

    client = current_client()
    if client is None:
        flash("Supabase is not configured.", "error")
        return redirect(url_for("students"))

    args = _list_args()
    records = sort_students(
        filter_students(list_students(client), args["search"], args["program"], args["course"]),
        args["order"],
    )
    return send_file(
        io.BytesIO(students_to_csv(records).encode("utf-8")),
        mimetype="text/csv",
        as_attachment=True,
        download_name=export_filename()
    )


def _form_data() -> Dict[str, Any]:
    data: Dict[str, Any] = request.form.to_dict()
    data["race"] = request.form.getlist("race")
    return data


def _flash_validation_errors(e: ValidationError) -> None:
    for error in e.errors():
        field = ".".join(str(part) for part in error["loc"]) or "form"
        flash(f"{field.replace('_', ' ').capitalize()}: {error['msg']}", "error")


def _form_context(student: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "student": student or {},
        "programs": [p.value for p in Program],
        "placements": COURSE_PLACEMENTS,
        "genders": GENDERS,
        "statuses": ENROLLMENT_STATUSES,
        "states": US_STATES,
    }


@app.route("/students/new", methods=["GET", "POST"])
def new_student():
    """Add a student by hand."""
    if not require_auth():
        return redirect(url_for("login"))

    if request.method == "POST":
        data = _form_data()
        try:
            form = StudentForm.model_validate(data)
        except ValidationError as e:
            _flash_validation_errors(e)
            return render_template("student_form.html", **_form_context(data)), 400

        client = current_client()
        if client is None:
            flash("Supabase is not configured.", "error")
            return render_template("student_form.html", **_form_context(data)), 500
        try:
            insert_students(client, [form.to_row()], created_by=session.get("user_id"))
        except StoreError as e:
            flash(f"❌ Failed to add student: {e.message}", "error")
            return render_template("student_form.html", **_form_context(data)), 500

        flash(f"✅ Added {form.legal_first_name} {form.legal_last_name}.", "success")
        return redirect(url_for("students"))

    return render_template("student_form.html", **_form_context())


@app.route("/students/<student_id>", methods=["GET", "POST"])
def edit_student(student_id):
    """View and edit one student. Only changed fields are written."""
    if not require_auth():
        return redirect(url_for("login"))

    client = current_client()
    student = get_student_by_id(client, student_id) if client else None
    if not student:
        flash("Student not found.", "error")
        return redirect(url_for("students"))

    if request.method == "POST":
        data = _form_data()
        try:
            form = StudentForm.model_validate(data)
        except ValidationError as e:
            _flash_validation_errors(e)
            return render_template("student_form.html", **_form_context({**student, **data})), 400

        changes = get_changed_fields(student, form.to_row())
        if not changes:
            flash("No changes to save.", "info")
            return redirect(url_for("edit_student", student_id=student_id))

        try:
            update_student(client, student_id, changes, updated_by=session.get("user_id"))
            flash("✅ Student updated successfully!", "success")
        except StoreError as e:
            flash(f"❌ Failed to update student: {e.message}", "error")
        return redirect(url_for("edit_student", student_id=student_id))

    return render_template("student_form.html", **_form_context(student))


# ---------------------------------------------------------------------------
# Import API
# ---------------------------------------------------------------------------

@app.route("/api/students/import", methods=["POST"])
def api_start_import():
    """Phase 1 of a CSV import (multipart: file, program, course_placement)."""
    client, _ = require_admin_api()

    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return api_error("A CSV file is required", 400)
    filename = secure_filename(upload.filename)
    if not allowed_file(filename):
        return api_error("Only .csv files can be imported", 400)

    try:
        program = Program(request.form.get("program", "").strip().upper())
    except ValueError:
        return api_error("Program must be ESOL or HCP", 400)

    course_placement = request.form.get("course_placement", "").strip() or None
    if program == Program.ESOL and course_placement not in ESOL_PLACEMENTS:
        return api_error("Select an ESOL course placement (or Other) for ESOL imports", 400)
    if program == Program.HCP:
        # HCP rows carry their own placement
        course_placement = None

    file_bytes = upload.read()
    if not file_bytes.strip():
        return api_error("The uploaded file is empty", 400)

    app.logger.info(f"📥 Import upload {filename} ({len(file_bytes)} bytes) by {session.get('user_email')}")
    try:
        outcome = start_import(client, file_bytes, program, course_placement, user_id=session.get("user_id"))
    except CSVParseError as e:
        return api_error(str(e), 400)
    return jsonify({"data": outcome_payload(outcome)})


@app.route("/api/students/import/<import_id>", methods=["GET"])
def api_import_report(import_id):
    """Current status and counts of an import."""
    require_admin_api()
    report = get_import_report(import_id, session.get("user_id"))
    return jsonify({"data": {
        "import_id": report.import_id,
        "status": report.status.value,
        "result": report.result.model_dump(mode="json"),
        "error_counts": {key: len(group) for key, group in group_errors_by_type(report.result.errors).items()},
    }})


@app.route("/api/students/import/<import_id>", methods=["DELETE"])
def api_dismiss_import(import_id):
    """Forget a finished import's report."""
    require_admin_api()
    dismiss_import_report(import_id, session.get("user_id"))
    return jsonify({"data": {"import_id": import_id}})


@app.route("/api/students/import/<import_id>/decisions", methods=["POST"])
def api_resume_import(import_id):
    """Phase 2: apply name-mismatch decisions (JSON {decisions: [...]})."""
    client, _ = require_admin_api()

    body = request.get_json(silent=True) or {}
    raw_decisions = body.get("decisions", [])
    if not isinstance(raw_decisions, list):
        return api_error("decisions must be a list", 400)
    try:
        decisions = [NameMismatchDecision.model_validate(d) for d in raw_decisions]
    except ValidationError as e:
        return api_error(e.errors()[0]["msg"], 400)

    outcome = resume_import(client, import_id, decisions, user_id=session.get("user_id"))
    return jsonify({"data": outcome_payload(outcome)})


@app.route("/api/students/import/<import_id>/cancel", methods=["POST"])
def api_cancel_import(import_id):
    require_admin_api()
    outcome = cancel_import(import_id, user_id=session.get("user_id"))
    return jsonify({"data": outcome_payload(outcome)})


@app.route("/api/students/import/<import_id>/errors.csv")
def api_import_errors_csv(import_id):
    """Download the import's errors (all, or one type via ?type=)."""
    require_admin_api()
    report = get_import_report(import_id, session.get("user_id"))
    errors = filter_errors(report.result.errors, request.args.get("type", "all"))
    return send_file(
        io.BytesIO(errors_to_csv(errors).encode("utf-8")),
        mimetype="text/csv",
        as_attachment=True,
        download_name=error_csv_filename()
    )


@app.route("/api/students/import/<import_id>/errors.txt")
def api_import_errors_text(import_id):
    """Errors as tab-separated text for the clipboard."""
    require_admin_api()
    report = get_import_report(import_id, session.get("user_id"))
    errors = filter_errors(report.result.errors, request.args.get("type", "all"))
    return app.response_class(errors_to_clipboard_text(errors), mimetype="text/plain")


# ---------------------------------------------------------------------------
# Allowlist API
# ---------------------------------------------------------------------------

@app.route("/api/admin/allowed-emails", methods=["GET"])
def api_list_allowed_emails():
    client, _ = require_admin_api()
    return jsonify({"data": list_allowed_emails(client)})


@app.route("/api/admin/allowed-emails", methods=["POST"])
def api_add_allowed_email():
    client, _ = require_admin_api()
    body = request.get_json(silent=True) or {}
    data = add_allowed_email(client, body.get("email"), body.get("role"), created_by=session.get("user_id"))
    return jsonify({"data": data}), 201


@app.route("/api/admin/allowed-emails", methods=["PATCH"])
def api_update_allowed_email():
    client, _ = require_admin_api()
    body = request.get_json(silent=True) or {}
    return jsonify({"data": update_allowed_email_role(client, body.get("email"), body.get("role"))})


@app.route("/api/admin/allowed-emails", methods=["DELETE"])
def api_remove_allowed_email():
    client, profile = require_admin_api()
    body = request.get_json(silent=True) or {}
    return jsonify({"data": remove_allowed_email(client, body.get("email"), profile.get("email"))})


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@app.route("/settings/profile", methods=["GET", "POST"])
def profile_settings():
    """View and update the signed-in user's profile."""
    if not require_auth():
        return redirect(url_for("login"))

    client = current_client()
    user_id = session.get("user_id")

    if request.method == "POST":
        updates = {field: request.form.get(field, "").strip() or None for field in PROFILE_FIELDS}
        if client is not None and update_profile(client, user_id, updates):
            flash("✅ Profile updated successfully!", "success")
        else:
            flash("❌ Failed to update profile.", "error")
        return redirect(url_for("profile_settings"))

    profile = None
    if client is not None:
        try:
            profile = get_profile(client, user_id)
        except StoreError as e:
            flash(f"❌ Could not load profile: {e.message}", "error")
    return render_template("profile.html", profile=profile or {"email": session.get("user_email")})


@app.route("/settings/permissions")
def permissions_settings():
    """Allowlist management page (admins only)."""
    if not require_auth():
        return redirect(url_for("login"))

    client = current_client()
    allowed_emails = []
    admin = client is not None and is_admin(client)
    if admin:
        try:
            allowed_emails = list_allowed_emails(client)
        except AllowlistError as e:
            flash(f"❌ Could not load the allowlist: {e.message}", "error")
    return render_template("permissions.html",
                           is_admin=admin,
                           allowed_emails=allowed_emails,
                           roles=[r.value for r in Role],
                           user_email=session.get("user_email"))


if __name__ == "__main__":
    # Render sets PORT environment variable, fallback to FLASK_PORT or 5000
    port = int(os.environ.get("PORT", os.environ.get("FLASK_PORT", 5000)))
    app.run(host="0.0.0.0", port=port, debug=False)
