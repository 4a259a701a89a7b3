"""
Integration tests for email sending functionality.

These test the email sending system including:
- send_email function with various parameters
- Email template wrapping
- Plain text generation
- The transactional emails sent during the purchase flow

Run: pytest tests/test_email_sending.py -v
"""
import pytest
from unittest.mock import patch
import app
from app import (db, send_email, wrap_email_template, html_to_text,
                 _purchase_request_email_html, _purchase_confirmed_email_html)
from models import Transaction


@pytest.mark.integration
class TestSendEmailFunction:
    """Test the send_email function"""

    @patch('app.resend.Emails.send')
    def test_send_email_basic(self, mock_send, client, test_user):
        """Test basic email sending"""
        app.resend.api_key = 'test_api_key'  # Set API key for test
        mock_send.return_value = {'id': 'test_email_id'}

        with client.application.app_context():
            result = send_email(
                to_email=test_user.email,
                subject='Test Subject',
                html_content='<p>Test content</p>'
            )

        assert result == True
        mock_send.assert_called_once()
        call_args = mock_send.call_args[0][0]
        assert call_args['to'] == test_user.email
        assert call_args['subject'] == 'Test Subject'
        assert 'html' in call_args
        assert 'text' in call_args  # Plain text version should be included

    @patch('app.resend.Emails.send')
    def test_send_email_no_api_key(self, mock_send, client, test_user):
        """Test that send_email returns False when API key is missing"""
        app.resend.api_key = None  # Clear API key

        with client.application.app_context():
            result = send_email(
                to_email=test_user.email,
                subject='Test Subject',
                html_content='<p>Test content</p>'
            )

        assert result == False
        mock_send.assert_not_called()

    @patch('app.resend.Emails.send')
    def test_send_email_custom_sender(self, mock_send, client, test_user):
        """Test email sending with custom sender"""
        app.resend.api_key = 'test_api_key'
        mock_send.return_value = {'id': 'test_email_id'}

        with client.application.app_context():
            result = send_email(
                to_email=test_user.email,
                subject='Test Subject',
                html_content='<p>Test content</p>',
                from_email='Custom Sender <custom@example.com>'
            )

        assert result == True
        call_args = mock_send.call_args[0][0]
        assert call_args['from'] == 'Custom Sender <custom@example.com>'

    @patch('app.resend.Emails.send')
    def test_send_email_default_sender(self, mock_send, client, test_user, monkeypatch):
        """Test that the default sender is used when not specified"""
        monkeypatch.delenv('RESEND_FROM_EMAIL', raising=False)
        app.resend.api_key = 'test_api_key'
        mock_send.return_value = {'id': 'test_email_id'}

        with client.application.app_context():
            send_email(
                to_email=test_user.email,
                subject='Test Subject',
                html_content='<p>Test content</p>'
            )

        call_args = mock_send.call_args[0][0]
        assert call_args['from'] == 'Thapar Marketplace <team@thaparmarketplace.in>'

    @patch('app.resend.Emails.send')
    def test_send_email_sender_from_env(self, mock_send, client, test_user, monkeypatch):
        monkeypatch.setenv('RESEND_FROM_EMAIL', 'Market <market@thapar.edu>')
        app.resend.api_key = 'test_api_key'

        with client.application.app_context():
            send_email(test_user.email, 'Subject', '<p>Body</p>')

        assert mock_send.call_args[0][0]['from'] == 'Market <market@thapar.edu>'

    @patch('app.resend.Emails.send')
    def test_send_email_includes_plain_text(self, mock_send, client, test_user):
        """Test that the plain text alternative is generated from the HTML"""
        app.resend.api_key = 'test_api_key'
        mock_send.return_value = {'id': 'test_email_id'}

        html_content = '''
        <div>
            <h1>Welcome</h1>
            <p>This is a <strong>test</strong> email.</p>
        </div>
        '''

        with client.application.app_context():
            send_email(
                to_email=test_user.email,
                subject='Test',
                html_content=html_content
            )

        call_args = mock_send.call_args[0][0]
        text = call_args['text']
        assert '<' not in text
        assert 'Welcome' in text
        assert 'This is a test email.' in text

    @patch('app.resend.Emails.send')
    def test_send_email_handles_api_error(self, mock_send, client, test_user):
        """Test that API errors are caught and logged, not raised"""
        app.resend.api_key = 'test_api_key'
        mock_send.side_effect = Exception('API Error')

        with client.application.app_context():
            result = send_email(
                to_email=test_user.email,
                subject='Test',
                html_content='<p>Test</p>'
            )

        assert result == False

    @patch('app.resend.Emails.send')
    def test_failed_email_does_not_break_purchase(self, mock_send, authenticated_client, test_product):
        app.resend.api_key = 'test_api_key'
        mock_send.side_effect = Exception('API Error')

        response = authenticated_client.post(f'/product/{test_product.id}/buy',
                                             data={'meeting_location': 'Near Library'})

        assert response.status_code == 302
        with authenticated_client.application.app_context():
            assert Transaction.query.count() == 1


@pytest.mark.integration
class TestEmailTemplateWrapping:
    """Test email template wrapping"""

    def test_wrap_email_template_adds_layout(self, client):
        with client.application.app_context():
            wrapped = wrap_email_template('<p>Test content</p>')

        assert wrapped.startswith('<!DOCTYPE html>')
        assert '<p>Test content</p>' in wrapped
        assert 'Thapar University Marketplace' in wrapped

    @patch('app.resend.Emails.send')
    def test_send_email_wraps_content(self, mock_send, client, test_user):
        app.resend.api_key = 'test_api_key'

        with client.application.app_context():
            send_email(test_user.email, 'Subject', '<p>Inner</p>')

        html = mock_send.call_args[0][0]['html']
        assert '<!DOCTYPE html>' in html
        assert '<p>Inner</p>' in html
        # The footer is not part of the plain text version
        assert 'Marketplace' not in mock_send.call_args[0][0]['text']


@pytest.mark.unit
class TestHtmlToText:
    """Test HTML to plain text conversion"""

    def test_html_to_text_removes_tags(self):
        """Test that HTML tags are removed"""
        html = '<p>Hello <strong>World</strong></p>'
        text = html_to_text(html)

        assert '<' not in text
        assert '>' not in text
        assert 'Hello' in text
        assert 'World' in text

    def test_html_to_text_handles_nested_tags(self):
        """Test that nested tags are handled"""
        html = '<div><p>Outer <span>Inner</span></p></div>'
        text = html_to_text(html)

        assert 'Outer' in text
        assert 'Inner' in text

    def test_html_to_text_handles_empty_html(self):
        """Test that empty HTML returns empty string"""
        assert html_to_text('') == ''

    def test_html_to_text_unescapes_entities(self):
        text = html_to_text('<p>Tom &amp; Jerry &lt;3</p>')
        assert text == 'Tom & Jerry <3'


@pytest.mark.integration
class TestPurchaseEmails:
    """Test the content of the purchase flow emails"""

    def test_purchase_request_email(self, client, pending_transaction):
        with client.application.app_context():
            txn = db.session.get(Transaction, pending_transaction.id)
            html = _purchase_request_email_html(txn)

        assert 'Test Student' in html
        assert 'Casio FX-991 Calculator' in html
        assert '₹1,500' in html
        assert 'Cash on Delivery' in html
        assert 'Near Library' in html
        assert f'/chats/{pending_transaction.chat_id}' in html

    def test_purchase_request_email_escapes_user_input(self, client, pending_transaction):
        with client.application.app_context():
            txn = db.session.get(Transaction, pending_transaction.id)
            txn.meeting_location = '<script>alert(1)</script>'
            html = _purchase_request_email_html(txn)
            db.session.rollback()

        assert '<script>' not in html
        assert '&lt;script&gt;' in html

    def test_purchase_confirmed_email(self, client, pending_transaction):
        with client.application.app_context():
            txn = db.session.get(Transaction, pending_transaction.id)
            html = _purchase_confirmed_email_html(txn)

        assert 'Test Seller' in html
        assert '₹1,500' in html
        assert '/profile' in html
