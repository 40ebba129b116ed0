"""
Tests for NewsBoard

Focus areas:
1. Rank score and listing order (hot / newest / by type)
2. Vote ledger: one row per (user, target), idempotence, atomic transitions
3. Post submission rules
4. Comment threads (parent validation, flat listing, tree building)
5. HTTP surface
"""

import threading
from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from django.contrib.auth.models import User, AnonymousUser
from django.contrib.contenttypes.models import ContentType
from django.core.exceptions import ImproperlyConfigured
from django.core.management import call_command
from django.db import DatabaseError, IntegrityError, connection, connections
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.test.utils import CaptureQueriesContext
from django.utils import timezone
from rest_framework.test import APIClient

from .exceptions import InvalidInput, NotFound, Unauthorized, Conflict
from .models import Post, Comment, Vote, PostType
from .queries import (
    get_post,
    list_comments,
    build_comment_tree,
    get_post_with_comment_tree,
    get_user_votes,
)
from .ranking import rank_score, decayed_score, net_score, list_hot, list_newest, list_by_type, resolve_limit
from .services import submit_post, create_comment, cast_vote, record_vote


def make_post(author, title='A post', post_type=PostType.STORY, **kwargs):
    if post_type == PostType.ASK:
        kwargs.setdefault('text', 'Question body')
    else:
        kwargs.setdefault('url', 'https://example.com/story')
    return Post.objects.create(author=author, title=title, type=post_type, **kwargs)


def ledger_rows(user, target):
    content_type = ContentType.objects.get_for_model(type(target))
    return Vote.objects.filter(user=user, content_type=content_type, object_id=target.id)


def ledger_count(target, vote_type):
    content_type = ContentType.objects.get_for_model(type(target))
    return Vote.objects.filter(
        content_type=content_type, object_id=target.id, vote_type=vote_type
    ).count()


class RankScoreTestCase(SimpleTestCase):
    """Pure scoring functions: no database needed."""

    def setUp(self):
        self.now = timezone.now()

    def test_one_hour_old_post(self):
        post = Post(upvotes=10, created_at=self.now - timedelta(seconds=3600))
        self.assertAlmostEqual(rank_score(post, self.now), 10 / 3)

    def test_brand_new_post_scores_half_its_upvotes(self):
        post = Post(upvotes=10, created_at=self.now)
        self.assertEqual(rank_score(post, self.now), 5.0)

    def test_newer_post_outranks_older_with_same_upvotes(self):
        older = Post(upvotes=10, created_at=self.now - timedelta(hours=1))
        newer = Post(upvotes=10, created_at=self.now)
        self.assertGreater(rank_score(newer, self.now), rank_score(older, self.now))

    def test_zero_upvotes_and_huge_age_is_zero_not_negative(self):
        post = Post(upvotes=0, created_at=self.now - timedelta(days=3650))
        self.assertEqual(rank_score(post, self.now), 0)

    def test_future_created_at_is_clamped_to_zero_age(self):
        post = Post(upvotes=8, created_at=self.now + timedelta(hours=5))
        self.assertEqual(rank_score(post, self.now), 4.0)

    def test_non_increasing_in_age(self):
        for upvotes in (0, 1, 7, 250):
            scores = [
                decayed_score(upvotes, self.now - timedelta(hours=hours), self.now)
                for hours in (0, 0.5, 1, 2, 12, 48, 1000)
            ]
            self.assertEqual(scores, sorted(scores, reverse=True))

    def test_non_decreasing_in_upvotes(self):
        for hours in (0, 1, 24, 500):
            created_at = self.now - timedelta(hours=hours)
            scores = [decayed_score(upvotes, created_at, self.now) for upvotes in (0, 1, 2, 10, 1000)]
            self.assertEqual(scores, sorted(scores))

    def test_net_strategy(self):
        post = Post(upvotes=7, downvotes=3, created_at=self.now - timedelta(hours=10))
        self.assertEqual(rank_score(post, self.now, strategy='net'), 4)
        self.assertEqual(net_score(2, 5), -3)

    @override_settings(BOARD={'RANKING_STRATEGY': 'net'})
    def test_strategy_comes_from_settings(self):
        post = Post(upvotes=7, downvotes=3, created_at=self.now)
        self.assertEqual(rank_score(post, self.now), 4)

    def test_unknown_strategy_is_a_configuration_error(self):
        post = Post(upvotes=1, created_at=self.now)
        with self.assertRaises(ImproperlyConfigured):
            rank_score(post, self.now, strategy='gravity')

    def test_resolve_limit(self):
        self.assertEqual(resolve_limit(None), 30)
        self.assertEqual(resolve_limit('5'), 5)
        self.assertEqual(resolve_limit(10_000), 100)
        for bad in (0, -1, 'abc', True, 2.5, 3.0, '2.5', 2.5j):
            with self.assertRaises(InvalidInput):
                resolve_limit(bad)


class ListingTestCase(TestCase):

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.now = timezone.now()

    def test_hot_orders_by_score(self):
        older = make_post(self.author, 'older', upvotes=10, created_at=self.now - timedelta(hours=1))
        newer = make_post(self.author, 'newer', upvotes=10, created_at=self.now)
        popular = make_post(self.author, 'popular', upvotes=100, created_at=self.now - timedelta(hours=5))

        hot = list_hot(now=self.now)

        self.assertEqual([p.id for p in hot], [popular.id, newer.id, older.id])

    def test_hot_ties_go_to_newer_post(self):
        first = make_post(self.author, 'first', upvotes=0, created_at=self.now - timedelta(hours=3))
        second = make_post(self.author, 'second', upvotes=0, created_at=self.now - timedelta(hours=1))

        hot = list_hot(now=self.now)

        self.assertEqual([p.id for p in hot], [second.id, first.id])

    def test_hot_excludes_hidden_posts_and_jobs(self):
        visible = make_post(self.author, 'visible')
        ask = make_post(self.author, 'ask', post_type=PostType.ASK)
        show = make_post(self.author, 'show', post_type=PostType.SHOW)
        make_post(self.author, 'deleted', is_deleted=True, upvotes=50)
        make_post(self.author, 'dead', is_dead=True, upvotes=50)
        make_post(self.author, 'job', post_type=PostType.JOB, upvotes=50)

        hot_ids = {p.id for p in list_hot(now=self.now)}

        self.assertEqual(hot_ids, {visible.id, ask.id, show.id})

    def test_hot_respects_limit(self):
        for i in range(5):
            make_post(self.author, f'post {i}', upvotes=i)

        self.assertEqual(len(list_hot(limit=3, now=self.now)), 3)

    def test_hot_default_limit_is_30(self):
        for i in range(35):
            make_post(self.author, f'post {i}')

        self.assertEqual(len(list_hot(now=self.now)), 30)

    def _full_scan(self, limit, strategy):
        posts = Post.objects.filter(is_deleted=False, is_dead=False, type__in=[
            PostType.STORY, PostType.ASK, PostType.SHOW,
        ])
        ranked = sorted(
            posts,
            key=lambda p: (rank_score(p, self.now, strategy), p.created_at, p.id),
            reverse=True,
        )
        return [p.id for p in ranked[:limit]]

    def test_hot_old_popular_post_beats_newest_posts(self):
        for i in range(4):
            make_post(self.author, f'fresh {i}', upvotes=1, created_at=self.now - timedelta(minutes=i))
        veteran = make_post(self.author, 'veteran', upvotes=500, created_at=self.now - timedelta(days=3))
        make_post(self.author, 'forgotten', upvotes=3, created_at=self.now - timedelta(days=30))

        hot = list_hot(limit=3, now=self.now)

        self.assertEqual(hot[0].id, veteran.id)
        self.assertEqual([p.id for p in hot], self._full_scan(3, 'decay'))

    def test_hot_matches_full_scan(self):
        for i in range(40):
            make_post(
                self.author, f'post {i}',
                upvotes=(i * 37) % 23,
                downvotes=(i * 11) % 7,
                created_at=self.now - timedelta(hours=(i * 13) % 97),
            )

        for strategy in ('decay', 'net'):
            for limit in (1, 5, 30):
                with self.subTest(strategy=strategy, limit=limit):
                    hot = list_hot(limit=limit, now=self.now, strategy=strategy)
                    self.assertEqual([p.id for p in hot], self._full_scan(limit, strategy))

    def test_hot_quiet_board_is_newest_first(self):
        posts = [
            make_post(self.author, f'post {i}', created_at=self.now - timedelta(hours=i))
            for i in range(6)
        ]

        hot = list_hot(limit=4, now=self.now)

        self.assertEqual([p.id for p in hot], [p.id for p in posts[:4]])

    def test_hot_with_no_posts_is_empty(self):
        self.assertEqual(list_hot(now=self.now), [])

    def test_newest_orders_by_created_at(self):
        old = make_post(self.author, 'old', upvotes=100, created_at=self.now - timedelta(days=2))
        mid = make_post(self.author, 'mid', created_at=self.now - timedelta(hours=2))
        new = make_post(self.author, 'new', created_at=self.now)
        make_post(self.author, 'job', post_type=PostType.JOB, created_at=self.now)
        make_post(self.author, 'dead', is_dead=True, created_at=self.now)

        self.assertEqual([p.id for p in list_newest()], [new.id, mid.id, old.id])

    def test_by_type_filters_and_orders(self):
        job_old = make_post(self.author, 'job old', post_type=PostType.JOB,
                            created_at=self.now - timedelta(hours=4))
        job_new = make_post(self.author, 'job new', post_type=PostType.JOB, created_at=self.now)
        make_post(self.author, 'story')
        make_post(self.author, 'deleted job', post_type=PostType.JOB, is_deleted=True)

        jobs = list_by_type(PostType.JOB)

        self.assertEqual([p.id for p in jobs], [job_new.id, job_old.id])

    def test_by_type_rejects_unknown_type(self):
        with self.assertRaises(InvalidInput):
            list_by_type('poll')

    def test_listings_do_not_touch_counters(self):
        post = make_post(self.author, upvotes=3, downvotes=1)

        list_hot(now=self.now)
        list_newest()
        list_by_type(PostType.STORY)

        post.refresh_from_db()
        self.assertEqual((post.upvotes, post.downvotes), (3, 1))


class SubmitPostTestCase(TestCase):

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')

    def test_story_with_url(self):
        post = submit_post(self.author, '  Hello  ', 'story', url='https://example.com')

        self.assertEqual(post.title, 'Hello')
        self.assertEqual(post.type, PostType.STORY)
        self.assertEqual(post.url, 'https://example.com')
        self.assertIsNone(post.text)
        self.assertEqual((post.upvotes, post.downvotes), (0, 0))
        self.assertEqual(post.author, self.author)

    def test_type_defaults_to_story(self):
        post = submit_post(self.author, 'Hello', text='Some text')
        self.assertEqual(post.type, PostType.STORY)

    def test_title_required(self):
        for title in (None, '', '   '):
            with self.assertRaises(InvalidInput):
                submit_post(self.author, title, 'story', url='https://example.com')

    def test_ask_with_url_is_rejected(self):
        with self.assertRaises(InvalidInput):
            submit_post(self.author, 'Ask', 'ask', url='http://x')
        self.assertEqual(Post.objects.count(), 0)

    def test_ask_with_text_and_url_is_rejected(self):
        with self.assertRaises(InvalidInput):
            submit_post(self.author, 'Ask', 'ask', url='https://example.com', text='why?')

    def test_ask_with_text_only(self):
        post = submit_post(self.author, 'Ask', 'ask', text='why?')
        self.assertEqual(post.text, 'why?')
        self.assertIsNone(post.url)

    def test_story_needs_exactly_one_of_url_or_text(self):
        with self.assertRaises(InvalidInput):
            submit_post(self.author, 'Both', 'story', url='https://example.com', text='body')
        with self.assertRaises(InvalidInput):
            submit_post(self.author, 'Neither', 'show')
        with self.assertRaises(InvalidInput):
            submit_post(self.author, 'Blank', 'job', url='  ', text='')

    def test_unknown_type_is_rejected(self):
        with self.assertRaises(InvalidInput):
            submit_post(self.author, 'Poll', 'poll', text='a or b')

    def test_malformed_url_is_rejected(self):
        with self.assertRaises(InvalidInput):
            submit_post(self.author, 'Bad', 'story', url='not a url')

    def test_anonymous_author_is_rejected(self):
        with self.assertRaises(Unauthorized):
            submit_post(AnonymousUser(), 'Hello', 'story', url='https://example.com')


class VoteLedgerTestCase(TestCase):
    """
    State machine and counter/ledger consistency.

    Default rulesets: posts accept +1/-1, comments accept +1 only.
    """

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.other = User.objects.create_user('other', 'o@test.com', 'pass')
        self.post = make_post(self.author)
        self.comment = Comment.objects.create(post=self.post, author=self.author, text='hi')

    def assertCountersMatchLedger(self, post):
        post.refresh_from_db()
        self.assertEqual(post.upvotes, ledger_count(post, 1))
        self.assertEqual(post.downvotes, ledger_count(post, -1))

    def test_upvote_then_repeat_then_downvote(self):
        post = cast_vote(self.user, 'post', self.post.id, 1)
        self.assertEqual((post.upvotes, post.downvotes), (1, 0))

        post = cast_vote(self.user, 'post', self.post.id, 1)
        self.assertEqual((post.upvotes, post.downvotes), (1, 0))

        post = cast_vote(self.user, 'post', self.post.id, -1)
        self.assertEqual((post.upvotes, post.downvotes), (0, 1))

        self.assertEqual(ledger_rows(self.user, self.post).count(), 1)
        self.assertCountersMatchLedger(self.post)

    def test_downvote_then_upvote(self):
        cast_vote(self.user, 'post', self.post.id, -1)
        post = cast_vote(self.user, 'post', self.post.id, 1)

        self.assertEqual((post.upvotes, post.downvotes), (1, 0))
        self.assertEqual(ledger_rows(self.user, self.post).get().vote_type, 1)

    def test_one_row_per_user_after_any_sequence(self):
        for vote_type in (1, -1, -1, 1, 1, -1, 1):
            cast_vote(self.user, 'post', self.post.id, vote_type)
            self.assertEqual(ledger_rows(self.user, self.post).count(), 1)
            self.assertCountersMatchLedger(self.post)

    def test_votes_from_different_users_add_up(self):
        cast_vote(self.user, 'post', self.post.id, 1)
        cast_vote(self.other, 'post', self.post.id, 1)
        post = cast_vote(self.author, 'post', self.post.id, -1)

        self.assertEqual((post.upvotes, post.downvotes), (2, 1))
        self.assertCountersMatchLedger(self.post)

    def test_record_vote_reports_action(self):
        first = record_vote(self.user, 'post', self.post.id, 1)
        again = record_vote(self.user, 'post', self.post.id, 1)
        flipped = record_vote(self.user, 'post', self.post.id, -1)

        self.assertEqual((first.action, first.previous_vote_type), ('created', None))
        self.assertEqual((again.action, again.previous_vote_type), ('unchanged', 1))
        self.assertEqual((flipped.action, flipped.previous_vote_type), ('changed', 1))

    def test_returned_target_has_author_resolved(self):
        post = cast_vote(self.user, 'post', self.post.id, 1)
        with self.assertNumQueries(0):
            self.assertEqual(post.author.username, 'author')

    def test_comment_upvote_is_idempotent(self):
        comment = cast_vote(self.user, 'comment', self.comment.id, 1)
        self.assertEqual(comment.score, 1)

        comment = cast_vote(self.user, 'comment', self.comment.id, 1)
        self.assertEqual(comment.score, 1)

        comment = cast_vote(self.other, 'comment', self.comment.id, 1)
        self.assertEqual(comment.score, 2)
        self.assertEqual(ledger_rows(self.user, self.comment).count(), 1)

    def test_comment_downvote_rejected_by_default(self):
        with self.assertRaises(InvalidInput):
            cast_vote(self.user, 'comment', self.comment.id, -1)

        self.comment.refresh_from_db()
        self.assertEqual(self.comment.score, 0)
        self.assertFalse(ledger_rows(self.user, self.comment).exists())

    def test_post_and_comment_votes_are_separate_ledger_rows(self):
        cast_vote(self.user, 'post', self.post.id, 1)
        cast_vote(self.user, 'comment', self.comment.id, 1)

        self.assertEqual(Vote.objects.filter(user=self.user).count(), 2)

    def test_invalid_vote_types_are_rejected_not_ignored(self):
        for bad in (0, 2, -2, True, '1', 1.0, None):
            with self.assertRaises(InvalidInput):
                cast_vote(self.user, 'post', self.post.id, bad)

        self.post.refresh_from_db()
        self.assertEqual((self.post.upvotes, self.post.downvotes), (0, 0))
        self.assertFalse(Vote.objects.exists())

    def test_invalid_target_kind(self):
        with self.assertRaises(InvalidInput):
            cast_vote(self.user, 'user', self.post.id, 1)

    def test_missing_target(self):
        with self.assertRaises(NotFound):
            cast_vote(self.user, 'post', 999999, 1)
        with self.assertRaises(NotFound):
            cast_vote(self.user, 'comment', 999999, 1)

    def test_deleted_post_cannot_be_voted(self):
        Post.objects.filter(id=self.post.id).update(is_deleted=True)

        with self.assertRaises(NotFound):
            cast_vote(self.user, 'post', self.post.id, 1)
        with self.assertRaises(NotFound):
            cast_vote(self.user, 'comment', self.comment.id, 1)

    def test_anonymous_voter(self):
        with self.assertRaises(Unauthorized):
            cast_vote(AnonymousUser(), 'post', self.post.id, 1)

    def test_duplicate_insert_surfaces_as_conflict(self):
        with patch.object(Vote.objects, 'create', side_effect=IntegrityError('duplicate')):
            with self.assertRaises(Conflict):
                cast_vote(self.user, 'post', self.post.id, 1)

        self.post.refresh_from_db()
        self.assertEqual(self.post.upvotes, 0)


@override_settings(BOARD={'VOTE_RULESETS': {'post': 'up_only', 'comment': 'updown'}})
class VoteRulesetTestCase(TestCase):

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = make_post(self.author)
        self.comment = Comment.objects.create(post=self.post, author=self.author, text='hi')

    def test_up_only_rejects_downvote(self):
        cast_vote(self.user, 'post', self.post.id, 1)

        with self.assertRaises(InvalidInput):
            cast_vote(self.user, 'post', self.post.id, -1)

        self.post.refresh_from_db()
        self.assertEqual((self.post.upvotes, self.post.downvotes), (1, 0))
        self.assertEqual(ledger_rows(self.user, self.post).get().vote_type, 1)

    def test_comment_updown_moves_score(self):
        comment = cast_vote(self.user, 'comment', self.comment.id, -1)
        self.assertEqual(comment.score, -1)

        comment = cast_vote(self.user, 'comment', self.comment.id, 1)
        self.assertEqual(comment.score, 1)

        comment = cast_vote(self.user, 'comment', self.comment.id, 1)
        self.assertEqual(comment.score, 1)

    @override_settings(BOARD={'VOTE_RULESETS': {'post': 'sideways'}})
    def test_unknown_ruleset_is_a_configuration_error(self):
        with self.assertRaises(ImproperlyConfigured):
            cast_vote(self.user, 'post', self.post.id, 1)


class VoteAtomicityTestCase(TransactionTestCase):
    """
    Ledger row and counters commit or roll back together.

    TransactionTestCase so the atomic block in cast_vote is a real
    transaction rather than a savepoint inside the test's transaction.
    """

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = make_post(self.author)

    def test_failed_counter_update_rolls_back_new_vote(self):
        with patch('board.services._counter_updates', side_effect=DatabaseError('boom')):
            with self.assertRaises(DatabaseError):
                cast_vote(self.user, 'post', self.post.id, 1)

        self.assertFalse(ledger_rows(self.user, self.post).exists())
        self.post.refresh_from_db()
        self.assertEqual((self.post.upvotes, self.post.downvotes), (0, 0))

    def test_failed_counter_update_rolls_back_changed_vote(self):
        cast_vote(self.user, 'post', self.post.id, 1)

        with patch('board.services._counter_updates', side_effect=DatabaseError('boom')):
            with self.assertRaises(DatabaseError):
                cast_vote(self.user, 'post', self.post.id, -1)

        self.assertEqual(ledger_rows(self.user, self.post).get().vote_type, 1)
        self.post.refresh_from_db()
        self.assertEqual((self.post.upvotes, self.post.downvotes), (1, 0))

    def test_flip_is_a_single_counter_update(self):
        cast_vote(self.user, 'post', self.post.id, 1)

        with CaptureQueriesContext(connection) as context:
            cast_vote(self.user, 'post', self.post.id, -1)

        counter_updates = [
            q['sql'] for q in context
            if q['sql'].startswith('UPDATE') and 'board_post' in q['sql']
        ]
        self.assertEqual(len(counter_updates), 1)
        self.assertIn('upvotes', counter_updates[0])
        self.assertIn('downvotes', counter_updates[0])


class ConcurrentVoteTestCase(TransactionTestCase):
    """
    Simultaneous votes on one post queue up instead of failing or losing updates.
    """

    THREADS = 8

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.voters = [
            User.objects.create_user(f'voter{i}', f'v{i}@test.com', 'pass')
            for i in range(self.THREADS)
        ]
        self.post = make_post(self.author)

    def _vote_in_threads(self, users, vote_type):
        barrier = threading.Barrier(len(users))
        errors = []

        def vote(user):
            try:
                barrier.wait()
                cast_vote(user, 'post', self.post.id, vote_type)
            except Exception as exc:
                errors.append(exc)
            finally:
                connections.close_all()

        threads = [threading.Thread(target=vote, args=(user,)) for user in users]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return errors

    def test_distinct_users_all_counted(self):
        errors = self._vote_in_threads(self.voters, 1)

        self.assertEqual(errors, [])
        self.post.refresh_from_db()
        self.assertEqual(self.post.upvotes, self.THREADS)
        self.assertEqual(self.post.upvotes, ledger_count(self.post, 1))
        self.assertEqual(self.post.downvotes, ledger_count(self.post, -1))

    def test_concurrent_flips_keep_counters_in_step_with_ledger(self):
        self.assertEqual(self._vote_in_threads(self.voters, 1), [])
        errors = self._vote_in_threads(self.voters[:self.THREADS // 2], -1)

        self.assertEqual(errors, [])
        self.post.refresh_from_db()
        half = self.THREADS // 2
        self.assertEqual((self.post.upvotes, self.post.downvotes), (self.THREADS - half, half))
        self.assertEqual(self.post.upvotes, ledger_count(self.post, 1))
        self.assertEqual(self.post.downvotes, ledger_count(self.post, -1))

    def test_same_user_twice_records_one_vote(self):
        voter = self.voters[0]
        errors = self._vote_in_threads([voter, voter], 1)

        self.assertEqual(errors, [])
        self.assertEqual(ledger_rows(voter, self.post).count(), 1)
        self.post.refresh_from_db()
        self.assertEqual(self.post.upvotes, 1)


class CommentTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = make_post(self.user, 'Post 5')
        self.other_post = make_post(self.user, 'Post 7')

    def test_create_top_level_comment(self):
        comment = create_comment(self.post.id, self.user, '  First!  ')

        self.assertEqual(comment.text, 'First!')
        self.assertIsNone(comment.parent_id)
        self.assertEqual(comment.score, 0)
        self.assertEqual(comment.author.username, 'user')

    def test_reply_to_comment_on_same_post(self):
        parent = create_comment(self.post.id, self.user, 'parent')
        reply = create_comment(self.post.id, self.user, 'reply', parent_id=parent.id)

        self.assertEqual(reply.parent_id, parent.id)

    def test_parent_on_other_post_is_rejected(self):
        foreign = create_comment(self.other_post.id, self.user, 'elsewhere')

        with self.assertRaises(InvalidInput):
            create_comment(self.post.id, self.user, 'reply', parent_id=foreign.id)
        self.assertEqual(Comment.objects.filter(post=self.post).count(), 0)

    def test_missing_parent(self):
        with self.assertRaises(NotFound):
            create_comment(self.post.id, self.user, 'reply', parent_id=424242)

    def test_empty_text_is_rejected(self):
        for text in ('', '   ', None):
            with self.assertRaises(InvalidInput):
                create_comment(self.post.id, self.user, text)

    def test_missing_or_deleted_post(self):
        with self.assertRaises(NotFound):
            create_comment(999999, self.user, 'hello')

        Post.objects.filter(id=self.post.id).update(is_deleted=True)
        with self.assertRaises(NotFound):
            create_comment(self.post.id, self.user, 'hello')

    def test_list_comments_newest_first_with_parent_ids(self):
        now = timezone.now()
        c1 = Comment.objects.create(post=self.post, author=self.user, text='one',
                                    created_at=now - timedelta(minutes=10))
        c2 = Comment.objects.create(post=self.post, author=self.user, text='two', parent=c1,
                                    created_at=now - timedelta(minutes=5))
        c3 = Comment.objects.create(post=self.post, author=self.user, text='three', created_at=now)
        Comment.objects.create(post=self.other_post, author=self.user, text='other')

        comments = list_comments(self.post.id)

        self.assertEqual([c.id for c in comments], [c3.id, c2.id, c1.id])
        self.assertEqual(comments[1].parent_id, c1.id)

    def test_list_comments_missing_post(self):
        with self.assertRaises(NotFound):
            list_comments(999999)

    def test_tree_building_nested(self):
        now = timezone.now()
        c1 = Comment.objects.create(post=self.post, author=self.user, text='root',
                                    created_at=now - timedelta(minutes=3))
        c2 = Comment.objects.create(post=self.post, author=self.user, text='reply', parent=c1,
                                    created_at=now - timedelta(minutes=2))
        c3 = Comment.objects.create(post=self.post, author=self.user, text='reply to reply', parent=c2,
                                    created_at=now - timedelta(minutes=1))
        c4 = Comment.objects.create(post=self.post, author=self.user, text='second root', created_at=now)

        tree = build_comment_tree(list_comments(self.post.id))

        self.assertEqual([node['comment'].id for node in tree], [c1.id, c4.id])
        self.assertEqual(tree[0]['replies'][0]['comment'].id, c2.id)
        self.assertEqual(tree[0]['replies'][0]['replies'][0]['comment'].id, c3.id)
        self.assertEqual(tree[1]['replies'], [])

    def test_tree_orphans_become_roots(self):
        parent = Comment.objects.create(post=self.post, author=self.user, text='parent')
        child = Comment.objects.create(post=self.post, author=self.user, text='child', parent=parent)

        tree = build_comment_tree([child])

        self.assertEqual([node['comment'].id for node in tree], [child.id])

    def test_post_with_tree_has_bounded_queries(self):
        parent = None
        for i in range(30):
            if i % 5 == 0:
                parent = Comment.objects.create(post=self.post, author=self.user, text=f'c{i}')
            else:
                Comment.objects.create(post=self.post, author=self.user, text=f'r{i}', parent=parent)

        with CaptureQueriesContext(connection) as context:
            result = get_post_with_comment_tree(self.post.id)
            for node in result['comments']:
                node['comment'].author.username

        self.assertLessEqual(len(context), 3)
        self.assertEqual(result['comment_count'], 30)
        self.assertEqual(len(result['comments']), 6)

    def test_get_post(self):
        self.assertEqual(get_post(self.post.id).id, self.post.id)

        Post.objects.filter(id=self.post.id).update(is_dead=True)
        self.assertEqual(get_post(self.post.id).id, self.post.id)

        Post.objects.filter(id=self.post.id).update(is_deleted=True)
        with self.assertRaises(NotFound):
            get_post(self.post.id)

    def test_get_user_votes(self):
        voter = User.objects.create_user('voter', 'v@test.com', 'pass')
        comment = create_comment(self.post.id, self.user, 'hello')
        cast_vote(voter, 'post', self.post.id, -1)
        cast_vote(voter, 'comment', comment.id, 1)

        votes = get_user_votes(voter, self.post.id)

        self.assertEqual(votes['post_vote'], -1)
        self.assertEqual(votes['comment_votes'], {comment.id: 1})
        self.assertEqual(get_user_votes(AnonymousUser(), self.post.id)['post_vote'], None)


class ApiTestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user('user', 'u@test.com', 'pass')
        self.post = make_post(self.user, 'Hello')

    def test_hot_listing(self):
        now = timezone.now()
        older = make_post(self.user, 'older', upvotes=10, created_at=now - timedelta(hours=1))
        make_post(self.user, 'job', post_type=PostType.JOB, upvotes=99)

        response = self.client.get('/api/posts/hot/')

        self.assertEqual(response.status_code, 200)
        ids = [item['id'] for item in response.data]
        self.assertEqual(ids, [older.id, self.post.id])
        self.assertAlmostEqual(response.data[0]['rank_score'], 10 / 3, places=2)
        self.assertEqual(response.data[0]['points'], 10)

    def test_points_are_net_votes_outside_hot_listing(self):
        make_post(self.user, 'mixed', upvotes=5, downvotes=2)

        response = self.client.get('/api/posts/newest/')

        points = {item['title']: item['points'] for item in response.data}
        self.assertEqual(points['mixed'], 3)
        self.assertNotIn('rank_score', response.data[0])

    def test_invalid_limit(self):
        response = self.client.get('/api/posts/hot/', {'limit': 'lots'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('error', response.data)

    def test_jobs_listing(self):
        job = make_post(self.user, 'job', post_type=PostType.JOB)

        response = self.client.get('/api/posts/jobs/')

        self.assertEqual([item['id'] for item in response.data], [job.id])

    def test_post_detail_missing(self):
        response = self.client.get('/api/posts/999999/')
        self.assertEqual(response.status_code, 404)

    def test_anonymous_cannot_vote(self):
        response = self.client.post(f'/api/votes/post/{self.post.id}/', {'vote_type': 1}, format='json')

        self.assertIn(response.status_code, (401, 403))
        self.assertFalse(Vote.objects.exists())

    def test_vote_flow(self):
        self.client.force_authenticate(user=self.user)
        url = f'/api/votes/post/{self.post.id}/'

        response = self.client.post(url, {'vote_type': 1}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['action'], 'created')
        self.assertEqual(response.data['target']['upvotes'], 1)

        response = self.client.post(url, {'vote_type': -1}, format='json')
        self.assertEqual(response.data['action'], 'changed')
        self.assertEqual(response.data['target']['upvotes'], 0)
        self.assertEqual(response.data['target']['downvotes'], 1)

    def test_vote_errors(self):
        self.client.force_authenticate(user=self.user)
        comment = create_comment(self.post.id, self.user, 'hi')

        response = self.client.post(f'/api/votes/comment/{comment.id}/', {'vote_type': -1}, format='json')
        self.assertEqual(response.status_code, 400)

        response = self.client.post('/api/votes/post/999999/', {'vote_type': 1}, format='json')
        self.assertEqual(response.status_code, 404)

        response = self.client.post(f'/api/votes/poll/{self.post.id}/', {'vote_type': 1}, format='json')
        self.assertEqual(response.status_code, 400)

    def test_submit_post(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.post('/api/posts/submit/', {
            'title': 'Ask: anything?', 'type': 'ask', 'url': 'http://x'
        }, format='json')
        self.assertEqual(response.status_code, 400)

        response = self.client.post('/api/posts/submit/', {
            'title': 'Ask: anything?', 'type': 'ask', 'text': 'Go on'
        }, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['type'], 'ask')
        self.assertEqual(response.data['author']['username'], 'user')

    def test_comments_roundtrip(self):
        self.client.force_authenticate(user=self.user)
        url = f'/api/comments/post/{self.post.id}/'

        response = self.client.post(url, {'text': 'top'}, format='json')
        self.assertEqual(response.status_code, 201)
        parent_id = response.data['id']

        response = self.client.post(url, {'text': 'reply', 'parent_id': parent_id}, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['parent_id'], parent_id)

        response = self.client.get(url)
        self.assertEqual(len(response.data), 2)

        detail = self.client.get(f'/api/posts/{self.post.id}/')
        self.assertEqual(detail.data['comment_count'], 2)
        self.assertEqual(detail.data['comments'][0]['comment']['id'], parent_id)
        self.assertEqual(len(detail.data['comments'][0]['replies']), 1)

    def test_comment_on_missing_post(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.post('/api/comments/post/999999/', {'text': 'hi'}, format='json')
        self.assertEqual(response.status_code, 404)


class SeedBoardCommandTestCase(TestCase):

    def test_seed_counters_match_ledger(self):
        call_command('seed_board', users=3, posts=4, comments=6, seed=7, stdout=StringIO(), stderr=StringIO())

        self.assertEqual(Post.objects.count(), 4)
        self.assertEqual(Comment.objects.count(), 6)
        for post in Post.objects.all():
            self.assertEqual(post.upvotes, ledger_count(post, 1))
            self.assertEqual(post.downvotes, ledger_count(post, -1))

    def test_no_posts_skips_comments_and_votes(self):
        out = StringIO()

        call_command('seed_board', users=2, posts=0, comments=5, stdout=out)

        self.assertEqual(Comment.objects.count(), 0)
        self.assertFalse(Vote.objects.exists())
        self.assertIn('skipping', out.getvalue())

    def test_no_users_creates_nothing(self):
        call_command('seed_board', users=0, posts=5, comments=5, stdout=StringIO())

        self.assertFalse(Post.objects.exists())
        self.assertFalse(Comment.objects.exists())
